# Authenticas Live-Server Test Suite
#
# This package contains:
# - API tests against a running Flask server (httpx)
# - Load tests (Locust)
#
# See tests/run.py for the entrypoint.
