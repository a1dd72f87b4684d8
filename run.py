"""
Entry point for Flask.

Usage (from project root):

    flask --app run.py seed-options
    flask --app run.py create-admin admin
    flask --app run.py --debug run
"""

from accounting import create_app

# WSGI application object; `flask run` looks for this `app` variable.
app = create_app()

if __name__ == "__main__":
    # Direct `python run.py` usage is for development only.
    app.run(debug=True)
