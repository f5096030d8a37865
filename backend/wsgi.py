# backend/wsgi.py
from infradesk import create_app

app = create_app()
