"""
Database Schemas

Each entity kind is one MongoDB collection. The Pydantic models below validate
what clients may write into a collection; the EntityKind descriptors tie a
collection to its input models, reference fields and change-event names.

- Category -> "category" collection
- Subcategory -> "subcategory" collection
- Product -> "product" collection
- Order -> "order" collection
- Profile -> "profile" collection
- FAQ -> "faq" collection
- ContactMessage -> "contact" collection
"""

import hashlib
import secrets
from dataclasses import dataclass
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Type

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field

Status = Literal["Active", "Inactive"]


def _check_object_id(value: str) -> str:
    if not ObjectId.is_valid(value):
        raise ValueError("Invalid objectid")
    return value


ObjectIdStr = Annotated[str, AfterValidator(_check_object_id)]


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(8)
    return salt + "$" + hashlib.sha256((salt + password).encode()).hexdigest()


class EntityInput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    def to_document(self, partial: bool = False) -> Dict[str, Any]:
        """Fields to persist. Partial documents only carry what the client sent."""
        if partial:
            return self.model_dump(exclude_unset=True, exclude_none=True)
        return self.model_dump()


# Category

class CategoryCreate(EntityInput):
    name: str = Field(..., min_length=1)
    status: Status = "Active"


class CategoryUpdate(EntityInput):
    name: Optional[str] = Field(None, min_length=1)
    status: Optional[Status] = None


# Subcategory

class SubcategoryCreate(EntityInput):
    name: str = Field(..., min_length=1)
    categoryId: ObjectIdStr
    status: Status = "Active"


class SubcategoryUpdate(EntityInput):
    name: Optional[str] = Field(None, min_length=1)
    categoryId: Optional[ObjectIdStr] = None
    status: Optional[Status] = None


# Product

class ProductCreate(EntityInput):
    name: str = Field(..., min_length=1)
    currentPrice: float = Field(..., ge=0)
    discountPrice: float = Field(0, ge=0)
    categoryId: Optional[ObjectIdStr] = None
    subcategoryId: Optional[ObjectIdStr] = None
    description: Optional[str] = None
    promoCode: Optional[str] = None
    status: Status = "Active"


class ProductUpdate(EntityInput):
    name: Optional[str] = Field(None, min_length=1)
    currentPrice: Optional[float] = Field(None, ge=0)
    discountPrice: Optional[float] = Field(None, ge=0)
    categoryId: Optional[ObjectIdStr] = None
    subcategoryId: Optional[ObjectIdStr] = None
    description: Optional[str] = None
    promoCode: Optional[str] = None
    status: Optional[Status] = None


# Orders, profiles, FAQ, contact

class OrderCreate(EntityInput):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    postalCode: Optional[str] = None
    orderNumber: Optional[str] = None
    totalQty: Optional[int] = Field(None, ge=0)
    totalCost: Optional[float] = Field(None, ge=0)


class ProfileCreate(EntityInput):
    fullName: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Email address")
    phone: Optional[str] = None
    password: Optional[str] = None

    def to_document(self, partial: bool = False) -> Dict[str, Any]:
        document = super().to_document(partial)
        if document.get("password"):
            document["password"] = hash_password(document["password"])
        return document


class FaqCreate(EntityInput):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)


class ContactCreate(EntityInput):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: Optional[str] = None
    website: Optional[str] = None
    message: str = Field(..., min_length=1)


# Entity kinds

@dataclass(frozen=True)
class Reference:
    """A field holding the id of another kind's entity.

    projection=None expands to the whole referenced document, otherwise only
    the listed fields (plus id) are kept.
    """

    field: str
    target: "EntityKind"
    projection: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class EntityKind:
    name: str
    label: str
    collection: str
    create_model: Type[EntityInput]
    update_model: Optional[Type[EntityInput]] = None
    references: Tuple[Reference, ...] = ()
    image_field: Optional[str] = None
    timestamps: bool = False
    unique: Tuple[str, ...] = ()
    sort: Tuple[Tuple[str, int], ...] = (("_id", 1),)
    hidden: Tuple[str, ...] = ()
    created_event: Optional[str] = None
    updated_event: Optional[str] = None
    deleted_event: Optional[str] = None

    @property
    def reference_fields(self) -> List[str]:
        return [ref.field for ref in self.references]


CATEGORY = EntityKind(
    name="category",
    label="Category",
    collection="category",
    create_model=CategoryCreate,
    update_model=CategoryUpdate,
    image_field="image",
    created_event="categoryUpdated",
    updated_event="categoryUpdated",
    deleted_event="categoryDeleted",
)

SUBCATEGORY = EntityKind(
    name="subcategory",
    label="Subcategory",
    collection="subcategory",
    create_model=SubcategoryCreate,
    update_model=SubcategoryUpdate,
    references=(Reference("categoryId", CATEGORY),),
    image_field="image",
    created_event="subcategoryUpdated",
    updated_event="subcategoryUpdated",
    deleted_event="subcategoryDeleted",
)

PRODUCT = EntityKind(
    name="product",
    label="Product",
    collection="product",
    create_model=ProductCreate,
    update_model=ProductUpdate,
    references=(
        Reference("categoryId", CATEGORY, projection=("name",)),
        Reference("subcategoryId", SUBCATEGORY, projection=("name",)),
    ),
    image_field="image",
    created_event="productUpdated",
    updated_event="productUpdated",
    deleted_event="productDeleted",
)

ORDER = EntityKind(
    name="order",
    label="Order",
    collection="order",
    create_model=OrderCreate,
    timestamps=True,
    sort=(("createdAt", -1), ("_id", -1)),
    created_event="newOrder",
)

PROFILE = EntityKind(
    name="profile",
    label="Profile",
    collection="profile",
    create_model=ProfileCreate,
    image_field="profilePicture",
    timestamps=True,
    unique=("email",),
    hidden=("password",),
    created_event="profileUpdated",
)

FAQ = EntityKind(
    name="faq",
    label="FAQ",
    collection="faq",
    create_model=FaqCreate,
    timestamps=True,
    created_event="faqUpdated",
)

CONTACT = EntityKind(
    name="contact",
    label="Contact message",
    collection="contact",
    create_model=ContactCreate,
    timestamps=True,
    created_event="contactUpdated",
)

ENTITY_KINDS = (CATEGORY, SUBCATEGORY, PRODUCT, ORDER, PROFILE, FAQ, CONTACT)
