"""Built-in copy for refund notifications.

Used as the hardcoded fallback when the email_templates table has no usable
row, and to seed that table. Placeholders use string.Template ($name) syntax.
"""

REFUND_TEMPLATES: dict[str, dict[str, str]] = {
    "refund_requested_guest": {
        "title": "Refund request received",
        "subject": "We received your refund request for $booking_reference",
        "body": (
            "Hi $guest_name,\n\n"
            "We received your request to refund $amount for booking $booking_reference.\n"
            "The property team will review it and you will hear from us once a decision is made.\n\n"
            "Track your request: $refund_url\n"
        ),
    },
    "refund_requested_admin": {
        "title": "New refund request",
        "subject": "Refund Request: $booking_reference - $amount",
        "body": (
            "$guest_name has requested a refund for booking $booking_reference.\n\n"
            "Amount: $amount\n"
            "Reason: $reason\n\n"
            "Review the request: $admin_refund_url\n"
        ),
    },
    "refund_under_review": {
        "title": "Refund under review",
        "subject": "Your refund request for $booking_reference is under review",
        "body": "Hi $guest_name,\n\nYour refund request for booking $booking_reference is now being reviewed.\n\n$refund_url\n",
    },
    "refund_approved": {
        "title": "Refund approved",
        "subject": "Your refund for $booking_reference has been approved",
        "body": (
            "Hi $guest_name,\n\n"
            "Good news: your refund of $amount for booking $booking_reference has been approved.\n"
            "$customer_notes\n\n"
            "We will let you know as soon as the money is on its way.\n\n$refund_url\n"
        ),
    },
    "refund_rejected": {
        "title": "Refund request declined",
        "subject": "Update on your refund request for $booking_reference",
        "body": (
            "Hi $guest_name,\n\n"
            "Unfortunately your refund request for booking $booking_reference was declined.\n\n"
            "Reason: $customer_notes\n\n$refund_url\n"
        ),
    },
    "refund_processing": {
        "title": "Refund being processed",
        "subject": "Your refund for $booking_reference is being processed",
        "body": "Hi $guest_name,\n\nYour refund of $amount for booking $booking_reference is being processed via $refund_method.\n\n$refund_url\n",
    },
    "refund_completed": {
        "title": "Refund completed",
        "subject": "Your refund for $booking_reference is complete",
        "body": "Hi $guest_name,\n\nYour refund of $amount for booking $booking_reference has been completed via $refund_method.\n\n$refund_url\n",
    },
    "refund_failed_guest": {
        "title": "Refund delayed",
        "subject": "Your refund for $booking_reference needs attention",
        "body": "Hi $guest_name,\n\n$customer_notes\n\n$refund_url\n",
    },
    "refund_failed_admin": {
        "title": "Refund processing failed",
        "subject": "ACTION REQUIRED: refund failed for $booking_reference",
        "body": (
            "Processing the refund of $amount for booking $booking_reference via $refund_method failed.\n"
            "See the internal notes on the request for the provider error and follow up manually.\n\n"
            "$admin_refund_url\n"
        ),
    },
    "refund_withdrawn_guest": {
        "title": "Refund request withdrawn",
        "subject": "Your refund request for $booking_reference was withdrawn",
        "body": "Hi $guest_name,\n\nYou withdrew your refund request for booking $booking_reference. Your booking can be changed again.\n",
    },
    "refund_withdrawn_admin": {
        "title": "Refund request withdrawn",
        "subject": "Refund request withdrawn: $booking_reference",
        "body": "$guest_name withdrew their refund request for booking $booking_reference.\n\n$admin_refund_url\n",
    },
    "refund_comment_guest": {
        "title": "New message on your refund",
        "subject": "New message about your refund for $booking_reference",
        "body": "Hi $guest_name,\n\nThe property team added a message to your refund request:\n\n$comment\n\n$refund_url\n",
    },
    "refund_comment_admin": {
        "title": "Guest replied on a refund",
        "subject": "New guest comment on refund for $booking_reference",
        "body": "$guest_name commented on their refund request:\n\n$comment\n\n$admin_refund_url\n",
    },
}
