from .audit import AuditLog
from .cart import Cart, CartItem
from .catalog import (
    Attachment,
    AttachmentType,
    Category,
    Course,
    CourseInstructor,
    CourseLevel,
    CourseSession,
    CourseSubCategory,
    CourseType,
    Instructor,
    SubCategory,
)
from .enrollment import Enrollment, SecureLink
from .error_log import ErrorLog
from .fulfillment_job import FulfillmentJob
from .order import Order, OrderItem
from .payment import Payment
from .user import User

__all__ = [
    "Attachment",
    "AttachmentType",
    "AuditLog",
    "Cart",
    "CartItem",
    "Category",
    "Course",
    "CourseInstructor",
    "CourseLevel",
    "CourseSession",
    "CourseSubCategory",
    "CourseType",
    "Enrollment",
    "ErrorLog",
    "FulfillmentJob",
    "Instructor",
    "Order",
    "OrderItem",
    "Payment",
    "SecureLink",
    "SubCategory",
    "User",
]
