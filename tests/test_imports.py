"""
Verify package structure and module imports.
Ensures that the core application modules can be imported without syntax errors,
confirming correct package setup and path configuration.
"""

def test_session_imports():
    """Assert that the session modules can be imported without syntax errors."""
    try:
        import iot_core_mqtt.session.main
        import iot_core_mqtt.session.controller
        import iot_core_mqtt.session.backoff
        import iot_core_mqtt.session.diagnostics
        import iot_core_mqtt.session.config_loader
        success = True
    except ImportError as e:
        success = False
        print(f"Session Import Failed: {e}")

    assert success is True


def test_client_imports():
    """Assert that the client modules can be imported without syntax errors."""
    try:
        import iot_core_mqtt.client.connection
        import iot_core_mqtt.client.credentials
        import iot_core_mqtt.client.identity
        success = True
    except ImportError as e:
        success = False
        print(f"Client Import Failed: {e}")

    assert success is True
