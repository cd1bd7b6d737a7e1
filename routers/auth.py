import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import EmailStr, Field, field_validator
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from address_book import add_address
from database import ADDRESSES, USERS, create_document, get_db, serialize_doc, utcnow
from errors import AuthenticationError, DuplicateFieldError, NotFoundError, ValidationError
from routers.users import favorite_products
from schemas import (
    PHONE_PATTERN, PINCODE_PATTERN, Address, AddressType, CamelModel, User,
)
from security import (
    create_token, get_current_user, hash_password, validate_password, verify_password,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])


class SignupBody(CamelModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    phone: str = Field(..., pattern=PHONE_PATTERN)
    password: str = Field(..., min_length=6)
    address_line1: str = Field(..., min_length=1, max_length=200)
    address_line2: Optional[str] = Field(None, max_length=200)
    landmark: Optional[str] = Field(None, max_length=100)
    city: str = Field(..., min_length=1, max_length=50)
    state: str = Field(..., min_length=1, max_length=50)
    pincode: str = Field(..., pattern=PINCODE_PATTERN)
    address_type: AddressType = "home"

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()


class LoginBody(CamelModel):
    phone: str = Field(..., pattern=PHONE_PATTERN)
    password: str = Field(..., min_length=1)


class ChangePasswordBody(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


def _password_problems(password: str, message: str) -> None:
    problems = validate_password(password)
    if problems:
        raise ValidationError(
            message, details=[{"field": "password", "message": p} for p in problems],
        )


def _existing_user(db: Database, email: str, phone: str) -> Optional[dict]:
    return db[USERS].find_one({"$or": [{"email": email}, {"phone": phone}]})


def _duplicate_field(db: Database, body: SignupBody) -> DuplicateFieldError:
    if db[USERS].find_one({"phone": body.phone}):
        return DuplicateFieldError("Phone number")
    return DuplicateFieldError("Email")


@router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(body: SignupBody, db: Database = Depends(get_db)):
    _password_problems(body.password, "Password validation failed")

    existing = _existing_user(db, body.email, body.phone)
    if existing:
        raise DuplicateFieldError("Email" if existing.get("email") == body.email else "Phone number")

    # a concurrent signup can pass the check above; the unique index decides
    try:
        user_id = create_document(db, USERS, User(
            name=body.name,
            email=body.email,
            phone=body.phone,
            password_hash=hash_password(body.password),
        ))
    except DuplicateKeyError:
        raise _duplicate_field(db, body)

    try:
        address = add_address(db, Address(
            user_id=user_id,
            type=body.address_type,
            name=body.name,
            phone=body.phone,
            address_line1=body.address_line1,
            address_line2=body.address_line2,
            landmark=body.landmark,
            city=body.city,
            state=body.state,
            pincode=body.pincode,
        ), make_default=True)
    except Exception:
        logger.warning("Signup address failed, removing user", extra={"user_id": str(user_id)})
        db[ADDRESSES].delete_many({"userId": user_id})
        db[USERS].delete_one({"_id": user_id})
        raise
    logger.info("User registered", extra={"user_id": str(user_id)})

    user = db[USERS].find_one({"_id": user_id})
    return {
        "success": True,
        "message": "User registered successfully",
        "token": create_token({"id": str(user_id)}),
        "user": {**serialize_doc(user), "defaultAddress": serialize_doc(address)},
    }


@router.post("/login")
def login(body: LoginBody, db: Database = Depends(get_db)):
    user = db[USERS].find_one({"phone": body.phone})
    if not user or not verify_password(body.password, user.get("passwordHash")):
        raise AuthenticationError("Invalid phone number or password")
    if not user.get("isActive", True):
        raise AuthenticationError("Account is deactivated. Please contact support.")

    now = utcnow()
    db[USERS].update_one({"_id": user["_id"]}, {"$set": {"lastLogin": now}})
    user["lastLogin"] = now
    return {
        "success": True,
        "message": "Login successful",
        "token": create_token({"id": str(user["_id"])}),
        "user": serialize_doc(user),
    }


@router.get("/me")
def get_me(user=Depends(get_current_user), db: Database = Depends(get_db)):
    user["favorites"] = favorite_products(db, user["_id"])
    return {"success": True, "user": serialize_doc(user)}


@router.post("/logout")
def logout(user=Depends(get_current_user)):
    # tokens are stateless; the client discards its copy
    return {"success": True, "message": "Logged out successfully"}


@router.put("/change-password")
def change_password(body: ChangePasswordBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    stored = db[USERS].find_one({"_id": user["_id"]}, {"passwordHash": 1})
    if not stored:
        raise NotFoundError("User")
    if not verify_password(body.current_password, stored.get("passwordHash")):
        raise ValidationError("Current password is incorrect")
    _password_problems(body.new_password, "New password validation failed")

    db[USERS].update_one(
        {"_id": user["_id"]},
        {"$set": {"passwordHash": hash_password(body.new_password), "updatedAt": utcnow()}},
    )
    return {"success": True, "message": "Password changed successfully"}
