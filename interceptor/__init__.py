"""Mainframe security-manager interception service.

To run the receive loops:
    from interceptor.config import load_settings
    from interceptor.core.worker import InterceptorService

    service = InterceptorService.from_settings(load_settings())
    service.start()

To serve the status API:
    from interceptor.flask_app import create_app
"""
# Note: flask_app is not imported here so the core stays usable without Flask
