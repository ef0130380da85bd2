"""WSGI entry-point for gunicorn deployments of the gamification service."""

from app import create_app

app = create_app()

if __name__ == "__main__":
    app.run()
