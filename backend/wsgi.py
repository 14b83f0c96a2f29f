# backend/wsgi.py
from authenticas import create_app

app = create_app()
