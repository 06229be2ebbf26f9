# Routes package - registers all blueprints with the Flask app

def register_blueprints(app):
    """Register all route blueprints with the Flask app."""
    from .celltrace import celltrace_bp

    app.register_blueprint(celltrace_bp)
