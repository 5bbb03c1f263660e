"""
Pytest configuration shared by every test module.
Sets the testing environment before the app and its settings are imported.
"""
import os

# Set testing environment before importing app
os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ["EMAIL_USE_CELERY"] = "False"
os.environ["ADVANCE_PAYMENT_CATEGORIES"] = "seasonal-fruits"
os.environ["SHIPPING_COST"] = "0"
