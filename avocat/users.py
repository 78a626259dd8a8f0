import logging

logger = logging.getLogger(__name__)

# Owner recorded when a payment cannot be matched to an account
UNKNOWN_USER_ID = "unknown"

ADMIN_ROLE = "admin"


class UserDirectory:
    """Read access to the `users` collection."""

    def __init__(self, collection, bootstrap_admin_uids=()):
        self.collection = collection
        self.bootstrap_admin_uids = frozenset(bootstrap_admin_uids)

    def ensure_indexes(self):
        self.collection.create_index("emailLower")

    def get(self, uid):
        return self.collection.find_one({"_id": uid})

    def find_by_email(self, email):
        if not email:
            return None
        normalized = email.strip().lower()
        return self.collection.find_one({"$or": [{"emailLower": normalized}, {"email": email.strip()}]})

    def list_users(self):
        return list(self.collection.find({}))

    def resolve_user_id(self, user_id, email):
        """
        Owner of a purchase: the explicit id when the checkout carried one,
        otherwise the account matching the customer email, otherwise
        UNKNOWN_USER_ID.
        """
        if user_id and user_id != UNKNOWN_USER_ID:
            return user_id
        user = self.find_by_email(email)
        if user:
            logger.info(f"Resolved purchase owner {user['_id']} from email {email}")
            return user["_id"]
        logger.warning(f"No account found for {email or 'missing email'}, storing purchase as '{UNKNOWN_USER_ID}'")
        return UNKNOWN_USER_ID

    def is_admin(self, uid):
        if not uid:
            return False
        user = self.get(uid)
        if user is not None:
            if user.get("role") == ADMIN_ROLE and user.get("isActive", True):
                return True
        if uid in self.bootstrap_admin_uids:
            logger.warning(f"Granting admin to {uid} from the bootstrap list; record the role in the user directory")
            return True
        return False
