import bcrypt


def hash_password(password):
    """Hash a password with bcrypt"""
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


def check_password(password, password_hash):
    """Verify a password against a stored bcrypt hash"""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def add_security_headers(response):
    """Add security headers to response"""
    # JSON API, nothing is meant to be framed or to load sub-resources
    response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"

    # Other security headers
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['Referrer-Policy'] = 'same-origin'
    response.headers['Permissions-Policy'] = 'geolocation=(), microphone=(), camera=()'

    # Ledger data must never be cached
    if response.mimetype in ('application/json', 'text/csv'):
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'

    return response


def init_security(app):
    """Initialize security features for the Flask app"""
    if app.config.get('PREFERRED_URL_SCHEME') == 'https':
        @app.after_request
        def add_hsts(response):
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
            return response

    # Add security headers to all responses
    app.after_request(add_security_headers)
