"""File used by Uvicorn to start the application."""

from authgate.app import get_application
from authgate.dependencies import get_settings

# We dissociate this step from the app.py file so that during tests we can initialize it with the mocked settings
app = get_application(settings=get_settings())
