"""
Standardized API messages for the grant endpoints.
All messages use consistent formatting and are translatable.
"""

from flask_babel import lazy_gettext as _

# Generic
ERROR_NOT_FOUND = _("%(item)s not found.")
ERROR_INFRASTRUCTURE = _("The service is temporarily unavailable. Please try again.")
ERROR_CONFLICT = _("The record was modified concurrently. Please retry.")

# Issuance
PURCHASE_NOT_AUTHORIZED = _("Order not found or payment not completed")
RESOURCE_NOT_DIGITAL = _("Product is not a digital product or not found in order")
RESOURCE_NOT_LICENSABLE = _("Product is not sold with a license key")
RESOURCE_NO_FILES = _("No digital files available for this product")
ISSUANCE_EXHAUSTED = _("Failed to generate a unique token")
EXPIRATION_OUT_OF_RANGE = _("Expiration must be between %(min)s and %(max)s hours")
MAX_USES_OUT_OF_RANGE = _("Maximum uses must be between 1 and %(max)s")
DUPLICATE_LICENSE_KEY = _("This license key already exists. Please use a different key.")
DOWNLOAD_TOKEN_GENERATED = _("Download token generated successfully")

# Downloads
DOWNLOAD_INVALID_TOKEN = _("Invalid download token")
DOWNLOAD_EXPIRED = _("Download link has expired")
DOWNLOAD_NOT_ACTIVE = _("Download link is no longer active")
DOWNLOAD_LIMIT_REACHED = _("Maximum download limit reached")
DOWNLOAD_REVOKED = _("Download link has been revoked")
DOWNLOAD_READY = _("Download ready")
DOWNLOAD_REDEEMABLE = _("Download link is valid")

# File gate
FILE_TOKEN_EXPIRED = _("File access token expired")
FILE_TOKEN_INVALID = _("Invalid file access token")
FILE_NOT_FOUND = _("File not found")

# Licenses
LICENSE_GENERATED = _("License key generated successfully")
LICENSE_ACTIVATED = _("License key activated successfully")
LICENSE_DEACTIVATED = _("License key deactivated successfully")
LICENSE_NOT_FOUND = _("License key not found")
LICENSE_EXPIRED = _("License key has expired")
LICENSE_MAX_ACTIVATIONS = _("Maximum activations reached for this license")
LICENSE_ALREADY_ACTIVATED = _("License key already activated on this device")
LICENSE_NOT_ACTIVATED = _("License key is not activated on this device")
LICENSE_SUSPENDED = _("License key is suspended")
LICENSE_REVOKED = _("License key has been revoked")
LICENSE_INACTIVE = _("License key is inactive")
LICENSE_VALID = _("License is valid")
LICENSE_EXTENDED = _("License key extended successfully")
LICENSE_UPDATED = _("License key updated successfully")
LICENSE_DELETED = _("License key deleted successfully")
LICENSE_CANNOT_EXTEND = _("Cannot extend license. Current status: %(status)s")
EXTENSION_OUT_OF_RANGE = _("Extension days must be between 1 and %(max)s")

# Administration
GRANT_REVOKED = _("Access revoked successfully")
GRANT_REGENERATED = _("Token regenerated successfully")
GRANTS_SWEPT = _("Expired grants cleaned up successfully")

# Notifications
NOTIFY_DOWNLOAD_SUBJECT = _("Your download for %(title)s is ready")
NOTIFY_DOWNLOAD_BODY = _(
    "Hello %(name)s,\n\nYour download link for %(title)s is ready: %(url)s\n"
    "It can be used %(max_uses)s times until %(expires)s.\n\n--\nShopVault")
NOTIFY_LICENSE_SUBJECT = _("Your License Key for %(title)s")
NOTIFY_LICENSE_BODY = _(
    "Hello %(name)s,\n\nYour license key for %(title)s has been generated.\n\n"
    "License Key: %(key)s\nLicense Type: %(license_type)s\nMax Activations: %(max_uses)s\n"
    "Order Number: %(order)s\nExpires At: %(expires)s\n\n"
    "Keep this license key safe. You'll need it to activate your product.\n\n--\nShopVault")
NOTIFY_LICENSE_SMS = _(
    "License Key for %(title)s: %(key)s. Order #%(order)s. Max Activations: %(max_uses)s. Keep this safe!")
