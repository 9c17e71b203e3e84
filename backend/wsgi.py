# backend/wsgi.py
from blindbox import create_app

app = create_app()
