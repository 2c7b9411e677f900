"""Tests for CLI configuration module."""

import json
from pathlib import Path

from cli.config import Config


def test_config_creates_default_file(tmp_path):
    """Test that config file is created with defaults if missing."""
    config_path = tmp_path / '.chunkup' / 'config.json'
    config = Config(config_path)

    assert config_path.exists()

    assert config.data['server_host'] == 'localhost'
    assert config.data['server_port'] == 8000
    assert config.data['timeout'] == 30.0
    assert config.data['chunk_size'] == 2 * 1024 * 1024
    assert config.data['concurrency'] == 3
    assert config.data['max_retries'] == 3
    assert 'api_key' not in config.data


def test_config_loads_existing_file(tmp_path):
    """Test loading existing config file."""
    config_path = tmp_path / '.chunkup' / 'config.json'
    config_path.parent.mkdir(parents=True)

    existing_data = {
        'api_key': 'token123',
        'server_host': 'example.com',
        'server_port': 9000,
        'chunk_size': 1048576,
    }
    with open(config_path, 'w') as f:
        json.dump(existing_data, f)

    config = Config(config_path)

    assert config.data['api_key'] == 'token123'
    assert config.get_base_url() == 'http://example.com:9000'
    assert config.get_upload_config()['chunk_size'] == 1048576

    assert config.data['timeout'] == 30.0
    assert config.data['max_retries'] == 3


def test_config_save_and_get_api_key(temp_config):
    """Test saving and retrieving API key."""
    assert temp_config.get_api_key() is None

    temp_config.set_api_key('token_abc')

    assert temp_config.get_api_key() == 'token_abc'

    with open(temp_config.config_path, 'r') as f:
        data = json.load(f)
    assert data['api_key'] == 'token_abc'


def test_config_handles_corrupted_file(tmp_path):
    """Test recovery from corrupted config file."""
    config_path = tmp_path / '.chunkup' / 'config.json'
    config_path.parent.mkdir(parents=True)

    with open(config_path, 'w') as f:
        f.write('{ invalid json content')

    config = Config(config_path)
    assert config.data['server_host'] == 'localhost'
    assert config.data['server_port'] == 8000

    backup_path = config_path.with_suffix('.json.bak')
    assert backup_path.exists()


def test_config_get_base_url(temp_config):
    """Test base URL construction."""
    assert temp_config.get_base_url() == 'http://localhost:8000'

    temp_config.data['server_host'] = 'example.com'
    temp_config.data['server_port'] = 9000
    assert temp_config.get_base_url() == 'http://example.com:9000'

    temp_config.data['server_url'] = 'https://upload.example.com'
    assert temp_config.get_base_url() == 'https://upload.example.com'


def test_config_get_timeout(temp_config):
    assert temp_config.get_timeout() == 30.0

    temp_config.data['timeout'] = 60
    assert temp_config.get_timeout() == 60.0


def test_config_get_upload_config(temp_config):
    """Test chunking and scheduling settings retrieval."""
    upload_config = temp_config.get_upload_config()

    assert upload_config == {'chunk_size': 2 * 1024 * 1024, 'concurrency': 3, 'max_retries': 3}

    temp_config.data['concurrency'] = 5
    temp_config.data['max_retries'] = '7'

    upload_config = temp_config.get_upload_config()
    assert upload_config['concurrency'] == 5
    assert upload_config['max_retries'] == 7


def test_config_database_path_expands_user(temp_config):
    temp_config.data['database_path'] = '~/uploads/state.db'
    assert temp_config.get_database_path() == Path.home() / 'uploads' / 'state.db'


def test_config_directory_created_if_missing(tmp_path):
    """Test that config directory is created if it doesn't exist."""
    config_path = tmp_path / 'nested' / 'deep' / '.chunkup' / 'config.json'

    assert not config_path.parent.exists()

    Config(config_path)
    assert config_path.parent.exists()
    assert config_path.exists()
