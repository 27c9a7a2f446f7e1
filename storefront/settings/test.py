from .base import *

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

ALLOWED_HOSTS = ['testserver']

RAZORPAY = {
    'KEY_ID': 'rzp_test_fixture',
    'KEY_SECRET': 'fixture-key-secret',
    'WEBHOOK_SECRET': 'fixture-webhook-secret',
    'BASE_URL': 'https://api.razorpay.test',
    'CURRENCY': 'INR',
    'TIMEOUT': 5,
    'ALLOW_INSECURE_DEFAULTS': False,
}

RATE_LIMIT = {
    **RATE_LIMIT,
    'ENABLED': False,
    'BACKEND': 'memory',
}
