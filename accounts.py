import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, get_documents, to_object_id, utcnow
from errors import Conflict, Forbidden, InvalidArgument, NotFound, Unauthorized
from schemas import ROLES, Address, User
from security import create_token, get_current_user, hash_password, public_user, require_admin, verify_password

logger = logging.getLogger(__name__)


# Auth
class RegisterDTO(BaseModel):
    username: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginDTO(BaseModel):
    email: EmailStr
    password: str


class ProfileDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(..., min_length=1)
    email: EmailStr
    current_password: Optional[str] = Field(None, alias="currentPassword")
    new_password: Optional[str] = Field(None, alias="newPassword")


class RoleDTO(BaseModel):
    role: str


class StatusDTO(BaseModel):
    active: Any = None


class AccountService:
    def __init__(self, db: Database):
        self.db = db
        self.users = db["user"]

    def _get_document(self, user_id: str) -> Dict[str, Any]:
        oid = to_object_id(user_id)
        user = self.users.find_one({"_id": oid}) if oid else None
        if not user:
            raise NotFound("User not found")
        return user

    def register(self, username: str, email: str, password: str) -> Dict[str, Any]:
        email = email.lower()
        if self.users.find_one({"$or": [{"email": email}, {"username": username}]}):
            raise Conflict("User already exists with this email or username")
        user = User(username=username, email=email, password_hash=hash_password(password), role="user")
        try:
            user_id = create_document(self.db, "user", user)
        except DuplicateKeyError:
            raise Conflict("User already exists with this email or username")
        doc = self._get_document(user_id)
        logger.info("Registered user %s", user_id)
        return {"token": create_token(doc), "user": public_user(doc)}

    def login(self, email: str, password: str) -> Dict[str, Any]:
        user = self.users.find_one({"email": email.lower()})
        if not user or not verify_password(password, user.get("password_hash", "")):
            raise Unauthorized("Invalid credentials")
        if not user.get("active", True):
            raise Unauthorized("Account is disabled")
        return {"token": create_token(user), "user": public_user(user)}

    def update_profile(self, user: Dict[str, Any], data: ProfileDTO) -> Dict[str, Any]:
        email = data.email.lower()
        if data.username != user.get("username") and self.users.find_one({"username": data.username}):
            raise Conflict("Username already taken")
        if email != user.get("email") and self.users.find_one({"email": email}):
            raise Conflict("Email already in use")

        changes: Dict[str, Any] = {"username": data.username, "email": email, "updated_at": utcnow()}
        if data.new_password:
            if not verify_password(data.current_password or "", user.get("password_hash", "")):
                raise InvalidArgument("Current password is incorrect")
            changes["password_hash"] = hash_password(data.new_password)
        self.users.update_one({"_id": user["_id"]}, {"$set": changes})
        return public_user(self._get_document(str(user["_id"])))

    def update_address(self, user: Dict[str, Any], address: Address) -> Dict[str, Any]:
        self.users.update_one({"_id": user["_id"]}, {"$set": {"address": address.model_dump(), "updated_at": utcnow()}})
        return {"message": "Address updated successfully", "address": address.model_dump()}

    # Administration
    def list_users(self) -> List[Dict[str, Any]]:
        return [public_user(u) for u in get_documents(self.db, "user", sort=[("created_at", -1)])]

    def get_user(self, user_id: str) -> Dict[str, Any]:
        return public_user(self._get_document(user_id))

    def set_role(self, acting: Dict[str, Any], user_id: str, role: str) -> Dict[str, Any]:
        if role not in ROLES:
            raise InvalidArgument("Invalid role")
        user = self._get_document(user_id)
        if user["_id"] == acting["_id"] and role != "admin":
            raise Forbidden("You cannot change your own admin role")
        self.users.update_one({"_id": user["_id"]}, {"$set": {"role": role, "updated_at": utcnow()}})
        logger.info("User %s set role of %s to %s", acting["_id"], user_id, role)
        return public_user(self._get_document(user_id))

    def set_active(self, acting: Dict[str, Any], user_id: str, active: Any) -> Dict[str, Any]:
        if not isinstance(active, bool):
            raise InvalidArgument("Status must be a boolean")
        user = self._get_document(user_id)
        if user["_id"] == acting["_id"] and not active:
            raise Forbidden("You cannot deactivate your own account")
        self.users.update_one({"_id": user["_id"]}, {"$set": {"active": active, "updated_at": utcnow()}})
        logger.info("User %s set active=%s on %s", acting["_id"], active, user_id)
        return public_user(self._get_document(user_id))

    def delete_user(self, acting: Dict[str, Any], user_id: str) -> None:
        user = self._get_document(user_id)
        if user["_id"] == acting["_id"]:
            raise Forbidden("You cannot delete your own account")
        self.users.delete_one({"_id": user["_id"]})
        logger.info("User %s deleted user %s", acting["_id"], user_id)


def get_account_service(db: Database = Depends(get_db)) -> AccountService:
    return AccountService(db)


router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", status_code=201)
def register(data: RegisterDTO, accounts: AccountService = Depends(get_account_service)):
    return accounts.register(data.username, data.email, data.password)


@router.post("/login")
def login(data: LoginDTO, accounts: AccountService = Depends(get_account_service)):
    return accounts.login(data.email, data.password)


@router.get("/me")
def me(user: Dict[str, Any] = Depends(get_current_user)):
    return public_user(user)


@router.put("/profile")
def update_profile(data: ProfileDTO, user: Dict[str, Any] = Depends(get_current_user),
                   accounts: AccountService = Depends(get_account_service)):
    return accounts.update_profile(user, data)


@router.put("/address")
def update_address(data: Address, user: Dict[str, Any] = Depends(get_current_user),
                   accounts: AccountService = Depends(get_account_service)):
    return accounts.update_address(user, data)


admin_router = APIRouter(prefix="/admin", tags=["admin"])


@admin_router.get("/users")
def list_users(user: Dict[str, Any] = Depends(require_admin), accounts: AccountService = Depends(get_account_service)):
    return accounts.list_users()


@admin_router.get("/users/{user_id}")
def get_user(user_id: str, user: Dict[str, Any] = Depends(require_admin),
             accounts: AccountService = Depends(get_account_service)):
    return accounts.get_user(user_id)


@admin_router.put("/users/{user_id}/role")
def set_user_role(user_id: str, data: RoleDTO, user: Dict[str, Any] = Depends(require_admin),
                  accounts: AccountService = Depends(get_account_service)):
    return accounts.set_role(user, user_id, data.role)


@admin_router.put("/users/{user_id}/status")
def set_user_status(user_id: str, data: StatusDTO, user: Dict[str, Any] = Depends(require_admin),
                    accounts: AccountService = Depends(get_account_service)):
    return accounts.set_active(user, user_id, data.active)


@admin_router.delete("/users/{user_id}")
def delete_user(user_id: str, user: Dict[str, Any] = Depends(require_admin),
                accounts: AccountService = Depends(get_account_service)):
    accounts.delete_user(user, user_id)
    return {"message": "User deleted successfully"}
