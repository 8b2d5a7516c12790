"""
Row-level tenant isolation.

Every society-owned table carries ``society_id``; request handlers reach
tenant data only through these helpers so one society never sees another's
rows.
"""
from flask import session

from app_models import db, SocietyAccount, User
from society_services import NotFoundError, PermissionDenied


def get_current_society_id():
    """Get the society of the logged in user"""
    return session.get('society_id')


def get_current_user():
    user_id = session.get('user_id')
    if user_id is None:
        return None
    return db.session.get(User, user_id)


def get_current_society():
    society_id = get_current_society_id()
    if society_id is None:
        raise PermissionDenied('No society access configured. Please contact administrator.')
    society = db.session.get(SocietyAccount, society_id)
    if society is None:
        raise NotFoundError('Society not found')
    return society


def get_society_filtered_query(model):
    """Query ``model`` restricted to the current society's rows"""
    society_id = get_current_society_id()
    if society_id is None:
        raise PermissionDenied('No society access configured. Please contact administrator.')
    return model.query.filter_by(society_id=society_id)


def ensure_society_access(obj):
    """Raise unless ``obj`` belongs to the current society"""
    # Other societies' rows are reported as missing, not forbidden
    if obj is None or obj.society_id != get_current_society_id():
        raise NotFoundError('Record not found')
    return obj


def validate_tenant_access(user=None):
    """Validate current user's tenant access"""
    user = user or get_current_user()
    if user is None or user.status != 'ACTIVE':
        return False
    if user.role == 'SUPER_ADMIN':
        return True

    society = db.session.get(SocietyAccount, user.society_id) if user.society_id else None
    if society is None or not society.is_active or society.status == 'LOCKED':
        return False
    return True
