import logging
from datetime import timedelta

import pytest

from chatlink.config import ConnectorConfig, ManagerConfig, configure_logging
from chatlink.errors import ConfigurationError


def test_connector_config_from_env():
    config = ConnectorConfig.from_env({
        "vendor_oauth_authorization_url": "https://vendor.example/oauth/authorize",
        "vendor_oauth_token_url": "https://vendor.example/oauth/token",
        "vendor_oauth_client_id": "client-1",
        "vendor_name": "Contoso",
        "base_url": "https://connector.example/",
        "fusebit_storage_audience": "https://api.platform.example",
        "boundary_id": "chat",
        "function_id": "connector",
        "fusebit_storage_id": "boundary/chat/function/connector/root",
        "pending_record_ttl_seconds": "120",
        "debug": "1",
    })
    config.validate()
    assert config.redirect_uri == "https://connector.example/callback"
    assert config.owner_id == "chat/connector"
    assert config.platform_base_url == "https://api.platform.example"
    assert config.storage_id == "boundary/chat/function/connector/root"
    assert config.pending_record_ttl == timedelta(seconds=120)
    assert config.token_refresh_margin == timedelta(seconds=30)
    assert config.debug


def test_connector_config_validate_lists_missing_settings():
    with pytest.raises(ConfigurationError) as e:
        ConnectorConfig(vendor_oauth_client_id="client-1").validate()
    assert "vendor_oauth_authorization_url" in e.value.message
    assert "base_url" in e.value.message
    assert "vendor_oauth_client_id" not in e.value.message


def test_manager_config_from_env():
    config = ManagerConfig.from_env({
        "self_url": "https://manager.example",
        "fusebit_settings_managers": "https://settings.example/one, https://settings.example/two",
        "fusebit_show_form_configuration": "true",
        "fusebit_allowed_return_to": "https://app.example/*",
    })
    assert config.settings_managers == ["https://settings.example/one", "https://settings.example/two"]
    assert config.show_form_configuration
    assert config.allowed_return_to == ["https://app.example/*"]
    assert not config.debug


def test_configure_logging_sets_package_level():
    configure_logging(debug=True)
    assert logging.getLogger("chatlink").level == logging.DEBUG
    configure_logging()
    assert logging.getLogger("chatlink").level == logging.INFO
