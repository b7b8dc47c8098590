from datetime import datetime, timezone
from typing import Dict, Optional

from flask import jsonify

MESSAGES: Dict[str, Dict[str, str]] = {
    # Common
    "SUCCESS": {"en": "Operation successful", "vi": "Thao tác thành công"},
    "CREATED": {"en": "Resource created successfully", "vi": "Tạo mới thành công"},
    "VALIDATION_ERROR": {"en": "Invalid request data", "vi": "Dữ liệu không hợp lệ"},
    "INVALID_ID": {"en": "Invalid identifier", "vi": "ID không hợp lệ"},
    "UNAUTHORIZED": {"en": "Unauthorized access", "vi": "Truy cập không được phép"},
    "FORBIDDEN": {"en": "Access forbidden", "vi": "Không có quyền truy cập"},
    "NOT_FOUND": {"en": "Resource not found", "vi": "Không tìm thấy dữ liệu"},
    "ROUTE_NOT_FOUND": {"en": "Route not found", "vi": "Không tìm thấy đường dẫn"},
    "METHOD_NOT_ALLOWED": {
        "en": "Method not allowed",
        "vi": "Phương thức không được hỗ trợ",
    },
    "DUPLICATE_ENTRY": {"en": "Resource already exists", "vi": "Dữ liệu đã tồn tại"},
    "INTERNAL_ERROR": {"en": "Internal server error", "vi": "Lỗi máy chủ nội bộ"},
    "REQUEST_ERROR": {
        "en": "The request could not be processed",
        "vi": "Không thể xử lý yêu cầu",
    },
    "TOO_MANY_REQUESTS": {
        "en": "Too many requests, please try again later",
        "vi": "Quá nhiều yêu cầu, vui lòng thử lại sau",
    },
    # Tokens
    "TOKEN_MISSING": {
        "en": "Authentication token is missing",
        "vi": "Thiếu token xác thực",
    },
    "TOKEN_INVALID": {"en": "Invalid token", "vi": "Token không hợp lệ"},
    "TOKEN_EXPIRED": {"en": "Token has expired", "vi": "Token đã hết hạn"},
    "TOKEN_REVOKED": {"en": "Token has been revoked", "vi": "Token đã bị thu hồi"},
    "TOKEN_REFRESH_SUCCESS": {
        "en": "Token refreshed successfully",
        "vi": "Làm mới token thành công",
    },
    # Auth
    "REGISTER_SUCCESS": {
        "en": "Registration successful. Please verify your email.",
        "vi": "Đăng ký thành công. Vui lòng xác thực email của bạn.",
    },
    "LOGIN_SUCCESS": {
        "en": "Login successful. Welcome back!",
        "vi": "Đăng nhập thành công. Chào mừng bạn trở lại!",
    },
    "LOGOUT_SUCCESS": {
        "en": "Logout successful. See you again!",
        "vi": "Đăng xuất thành công. Hẹn gặp lại bạn!",
    },
    "INVALID_CREDENTIALS": {
        "en": "Invalid email or password",
        "vi": "Email hoặc mật khẩu không đúng",
    },
    "EMAIL_EXISTS": {"en": "Email already exists", "vi": "Email đã tồn tại"},
    "ACCOUNT_LOCKED": {
        "en": "Account locked due to too many failed attempts",
        "vi": "Tài khoản bị khóa do đăng nhập sai quá nhiều lần",
    },
    "ACCOUNT_DISABLED": {
        "en": "This account has been disabled",
        "vi": "Tài khoản này đã bị vô hiệu hóa",
    },
    "EMAIL_NOT_VERIFIED": {
        "en": "Please verify your email before logging in",
        "vi": "Vui lòng xác thực email trước khi đăng nhập",
    },
    "EMAIL_VERIFIED": {
        "en": "Email verified successfully",
        "vi": "Xác thực email thành công",
    },
    "EMAIL_ALREADY_VERIFIED": {
        "en": "Email is already verified",
        "vi": "Email đã được xác thực",
    },
    "VERIFICATION_SENT": {
        "en": "Verification code sent",
        "vi": "Mã xác thực đã được gửi",
    },
    "VERIFICATION_CODE_INVALID": {
        "en": "The verification code is incorrect",
        "vi": "Mã xác thực không đúng",
    },
    "VERIFICATION_CODE_EXPIRED": {
        "en": "The verification code has expired. Please request a new one.",
        "vi": "Mã xác thực đã hết hạn. Vui lòng yêu cầu mã mới.",
    },
    "VERIFICATION_TOO_MANY_ATTEMPTS": {
        "en": "Too many incorrect attempts. Please request a new verification code.",
        "vi": "Nhập sai quá nhiều lần. Vui lòng yêu cầu mã xác thực mới.",
    },
    "PASSWORD_RESET_SENT": {
        "en": "If this email exists, a reset code has been sent",
        "vi": "Nếu email tồn tại, mã đặt lại mật khẩu đã được gửi",
    },
    "PASSWORD_RESET_SUCCESS": {
        "en": "Password reset successfully",
        "vi": "Đặt lại mật khẩu thành công",
    },
    "RESET_CODE_INVALID": {
        "en": "Invalid or expired reset code",
        "vi": "Mã đặt lại không hợp lệ hoặc đã hết hạn",
    },
    "CURRENT_PASSWORD_INVALID": {
        "en": "Current password is incorrect",
        "vi": "Mật khẩu hiện tại không đúng",
    },
    # Users
    "PROFILE_RETRIEVED": {
        "en": "Profile retrieved successfully",
        "vi": "Lấy thông tin hồ sơ thành công",
    },
    "PROFILE_UPDATED": {
        "en": "Profile updated successfully",
        "vi": "Cập nhật hồ sơ thành công",
    },
    "USERS_RETRIEVED": {
        "en": "Users retrieved successfully",
        "vi": "Lấy danh sách người dùng thành công",
    },
    "USER_RETRIEVED": {
        "en": "User retrieved successfully",
        "vi": "Lấy thông tin người dùng thành công",
    },
    "USER_UPDATED": {
        "en": "User updated successfully",
        "vi": "Cập nhật người dùng thành công",
    },
    "USER_DELETED": {
        "en": "User deleted successfully",
        "vi": "Xóa người dùng thành công",
    },
    "USER_NOT_FOUND": {"en": "User not found", "vi": "Không tìm thấy người dùng"},
    "CANNOT_MODIFY_SELF": {
        "en": "You cannot perform this action on your own account",
        "vi": "Bạn không thể thực hiện thao tác này trên tài khoản của mình",
    },
    # Addresses
    "ADDRESSES_RETRIEVED": {
        "en": "Addresses retrieved successfully",
        "vi": "Lấy danh sách địa chỉ thành công",
    },
    "ADDRESS_RETRIEVED": {
        "en": "Address retrieved successfully",
        "vi": "Lấy địa chỉ thành công",
    },
    "ADDRESS_ADDED": {"en": "Address added successfully", "vi": "Thêm địa chỉ thành công"},
    "ADDRESS_UPDATED": {
        "en": "Address updated successfully",
        "vi": "Cập nhật địa chỉ thành công",
    },
    "ADDRESS_DELETED": {
        "en": "Address deleted successfully",
        "vi": "Xóa địa chỉ thành công",
    },
    "ADDRESS_DEFAULT_SET": {
        "en": "Default address updated",
        "vi": "Đã đặt địa chỉ mặc định",
    },
    "ADDRESS_NOT_FOUND": {"en": "Address not found", "vi": "Không tìm thấy địa chỉ"},
    "DEFAULT_ADDRESS_NOT_FOUND": {
        "en": "No default address found",
        "vi": "Không tìm thấy địa chỉ mặc định",
    },
    # Categories
    "CATEGORIES_RETRIEVED": {
        "en": "Categories retrieved successfully",
        "vi": "Lấy danh sách danh mục thành công",
    },
    "CATEGORY_RETRIEVED": {
        "en": "Category retrieved successfully",
        "vi": "Lấy danh mục thành công",
    },
    "CATEGORY_TREE_RETRIEVED": {
        "en": "Category tree retrieved successfully",
        "vi": "Lấy cây danh mục thành công",
    },
    "CATEGORY_PATH_RETRIEVED": {
        "en": "Category path retrieved successfully",
        "vi": "Lấy đường dẫn danh mục thành công",
    },
    "CATEGORY_CREATED": {
        "en": "Category created successfully",
        "vi": "Tạo danh mục thành công",
    },
    "CATEGORY_UPDATED": {
        "en": "Category updated successfully",
        "vi": "Cập nhật danh mục thành công",
    },
    "CATEGORY_DELETED": {
        "en": "Category deleted successfully",
        "vi": "Xóa danh mục thành công",
    },
    "CATEGORIES_REORDERED": {
        "en": "Categories reordered successfully",
        "vi": "Sắp xếp danh mục thành công",
    },
    "CATEGORY_NOT_FOUND": {"en": "Category not found", "vi": "Không tìm thấy danh mục"},
    "PARENT_CATEGORY_NOT_FOUND": {
        "en": "Parent category not found",
        "vi": "Danh mục cha không tồn tại",
    },
    "CATEGORY_SLUG_EXISTS": {
        "en": "Category slug already exists",
        "vi": "Slug danh mục đã tồn tại",
    },
    "CATEGORY_DEPTH_EXCEEDED": {
        "en": "Categories cannot be nested more than five levels deep",
        "vi": "Không thể tạo danh mục con quá 5 cấp",
    },
    "CATEGORY_SELF_PARENT": {
        "en": "A category cannot be its own parent",
        "vi": "Danh mục không thể là cha của chính nó",
    },
    "CATEGORY_DESCENDANT_PARENT": {
        "en": "A descendant category cannot become the parent",
        "vi": "Không thể chọn danh mục con làm danh mục cha",
    },
    "CATEGORY_HAS_CHILDREN": {
        "en": "Cannot delete a category that has subcategories",
        "vi": "Không thể xóa danh mục có danh mục con",
    },
    "CATEGORY_HAS_PRODUCTS": {
        "en": "Cannot delete a category that has products",
        "vi": "Không thể xóa danh mục có sản phẩm",
    },
    "CATEGORY_HIERARCHY_CHECKED": {
        "en": "Category hierarchy validated",
        "vi": "Đã kiểm tra cây danh mục",
    },
    "SEARCH_QUERY_REQUIRED": {
        "en": "Search query must not be empty",
        "vi": "Từ khóa tìm kiếm không được để trống",
    },
    # Products
    "PRODUCTS_RETRIEVED": {
        "en": "Products retrieved successfully",
        "vi": "Lấy danh sách sản phẩm thành công",
    },
    "PRODUCT_RETRIEVED": {
        "en": "Product retrieved successfully",
        "vi": "Lấy sản phẩm thành công",
    },
    "PRODUCT_CREATED": {
        "en": "Product created successfully",
        "vi": "Tạo sản phẩm thành công",
    },
    "PRODUCT_UPDATED": {
        "en": "Product updated successfully",
        "vi": "Cập nhật sản phẩm thành công",
    },
    "PRODUCTS_UPDATED": {
        "en": "Products updated successfully",
        "vi": "Cập nhật các sản phẩm thành công",
    },
    "PRODUCT_DELETED": {
        "en": "Product deleted successfully",
        "vi": "Xóa sản phẩm thành công",
    },
    "PRODUCT_NOT_FOUND": {"en": "Product not found", "vi": "Không tìm thấy sản phẩm"},
    "PRODUCT_UNAVAILABLE": {
        "en": "Product not found or not available",
        "vi": "Sản phẩm không tồn tại hoặc không còn bán",
    },
    "SKU_EXISTS": {"en": "SKU already exists", "vi": "SKU đã tồn tại"},
    "STOCK_UPDATED": {
        "en": "Product stock updated",
        "vi": "Cập nhật tồn kho thành công",
    },
    "STOCK_NEGATIVE": {
        "en": "Stock cannot be negative",
        "vi": "Tồn kho không thể âm",
    },
    "INSUFFICIENT_STOCK": {"en": "Insufficient stock", "vi": "Không đủ hàng trong kho"},
    "REVIEW_ADDED": {"en": "Review added successfully", "vi": "Thêm đánh giá thành công"},
    "REVIEW_EXISTS": {
        "en": "You have already reviewed this product",
        "vi": "Bạn đã đánh giá sản phẩm này",
    },
    # Cart
    "CART_RETRIEVED": {
        "en": "Cart retrieved successfully",
        "vi": "Lấy giỏ hàng thành công",
    },
    "CART_ITEM_ADDED": {
        "en": "Item added to cart",
        "vi": "Đã thêm sản phẩm vào giỏ hàng",
    },
    "CART_ITEM_UPDATED": {
        "en": "Cart item updated",
        "vi": "Đã cập nhật sản phẩm trong giỏ hàng",
    },
    "CART_ITEM_REMOVED": {
        "en": "Item removed from cart",
        "vi": "Đã xóa sản phẩm khỏi giỏ hàng",
    },
    "CART_CLEARED": {"en": "Cart cleared", "vi": "Đã xóa toàn bộ giỏ hàng"},
    "CART_ITEM_NOT_FOUND": {
        "en": "Cart item not found",
        "vi": "Không tìm thấy sản phẩm trong giỏ hàng",
    },
    "CART_EMPTY": {"en": "Cart is empty", "vi": "Giỏ hàng trống"},
    # Wishlist
    "WISHLIST_RETRIEVED": {
        "en": "Wishlist retrieved successfully",
        "vi": "Lấy danh sách yêu thích thành công",
    },
    "WISHLIST_ADDED": {
        "en": "Product added to wishlist",
        "vi": "Đã thêm sản phẩm vào danh sách yêu thích",
    },
    "WISHLIST_REMOVED": {
        "en": "Product removed from wishlist",
        "vi": "Đã xóa sản phẩm khỏi danh sách yêu thích",
    },
    "WISHLIST_CLEARED": {
        "en": "Wishlist cleared",
        "vi": "Đã xóa toàn bộ danh sách yêu thích",
    },
    "WISHLIST_EXISTS": {
        "en": "Product is already in wishlist",
        "vi": "Sản phẩm đã có trong danh sách yêu thích",
    },
    "WISHLIST_ITEM_NOT_FOUND": {
        "en": "Product not found in wishlist",
        "vi": "Sản phẩm không có trong danh sách yêu thích",
    },
    "WISHLIST_MOVED_TO_CART": {
        "en": "Moved to cart",
        "vi": "Đã chuyển vào giỏ hàng",
    },
    # Orders
    "ORDER_CREATED": {"en": "Order created successfully", "vi": "Tạo đơn hàng thành công"},
    "ORDERS_RETRIEVED": {
        "en": "Orders retrieved successfully",
        "vi": "Lấy danh sách đơn hàng thành công",
    },
    "ORDER_RETRIEVED": {
        "en": "Order retrieved successfully",
        "vi": "Lấy đơn hàng thành công",
    },
    "ORDER_STATISTICS_RETRIEVED": {
        "en": "Order statistics retrieved successfully",
        "vi": "Lấy thống kê đơn hàng thành công",
    },
    "ORDER_NOT_FOUND": {"en": "Order not found", "vi": "Không tìm thấy đơn hàng"},
    "ORDER_CANCELLED": {"en": "Order cancelled", "vi": "Đã hủy đơn hàng"},
    "ORDER_CANNOT_CANCEL": {
        "en": "Order cannot be cancelled at this stage",
        "vi": "Không thể hủy đơn hàng ở trạng thái này",
    },
    "ORDER_STATUS_UPDATED": {
        "en": "Order status updated",
        "vi": "Cập nhật trạng thái đơn hàng thành công",
    },
    # Loyalty
    "LOYALTY_STATS_RETRIEVED": {
        "en": "Loyalty stats retrieved successfully",
        "vi": "Lấy thông tin điểm thưởng thành công",
    },
    "LOYALTY_HISTORY_RETRIEVED": {
        "en": "Loyalty history retrieved successfully",
        "vi": "Lấy lịch sử điểm thưởng thành công",
    },
    "LOYALTY_EXPIRING_RETRIEVED": {
        "en": "Expiring points retrieved successfully",
        "vi": "Lấy điểm sắp hết hạn thành công",
    },
    "LOYALTY_RULES_RETRIEVED": {
        "en": "Loyalty rules retrieved successfully",
        "vi": "Lấy quy tắc điểm thưởng thành công",
    },
    "POINTS_REDEEMED": {
        "en": "Points redeemed successfully",
        "vi": "Đổi điểm thành công",
    },
    "POINTS_AWARDED": {
        "en": "Points awarded successfully",
        "vi": "Cộng điểm thành công",
    },
    "POINTS_EXPIRED": {
        "en": "Expired points processed",
        "vi": "Đã xử lý điểm hết hạn",
    },
    "INSUFFICIENT_POINTS": {"en": "Insufficient points", "vi": "Không đủ điểm"},
    "MINIMUM_REDEMPTION": {
        "en": "Points below the minimum redemption amount",
        "vi": "Số điểm thấp hơn mức đổi tối thiểu",
    },
    "LOYALTY_ANALYTICS_RETRIEVED": {
        "en": "Loyalty analytics retrieved successfully",
        "vi": "Lấy thống kê điểm thưởng thành công",
    },
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def resolve_message(key: str, fallback: Optional[str] = None) -> Dict[str, str]:
    entry = MESSAGES.get(key)
    if entry:
        return entry
    text = fallback or key
    return {"en": text, "vi": text}


def success_response(data=None, key: str = "SUCCESS", status: int = 200, **extra):
    message = resolve_message(key)
    payload = {
        "success": True,
        "message": message["en"],
        "messageVi": message["vi"],
        "data": data,
        "timestamp": _now_iso(),
    }
    payload.update(extra)
    return jsonify(payload), status


def error_response(key: str, status: int = 400, **extra):
    """Build the bilingual error body used by every handler.

    ``extra`` keys are merged into the payload, which is how field level
    validation problems reach the client as ``errors``.
    """
    message = resolve_message(key)
    payload = {
        "success": False,
        "message": message["en"],
        "messageVi": message["vi"],
        "timestamp": _now_iso(),
    }
    payload.update(extra)
    return jsonify(payload), status


def validation_error(errors):
    if isinstance(errors, str):
        errors = [errors]
    return error_response("VALIDATION_ERROR", 400, errors=list(errors))
