from passlib.hash import pbkdf2_sha256
from models import User

REVERSAL_ROLES = ('Admin', 'Accountant')


def verify_credential(credential):
    """
    Check a reversal credential against every active Admin/Accountant.

    The credential is the plain password typed into the reversal dialog.
    """
    if not credential:
        return False
    approvers = User.query.filter(User.role.in_(REVERSAL_ROLES)).all()
    for user in approvers:
        if not user.is_active:
            continue
        try:
            if pbkdf2_sha256.verify(credential, user.password_hash):
                return True
        except ValueError:
            # Malformed hash on a legacy row; it can never match.
            continue
    return False
