# ticketing/infrastructure/notifications.py

import logging

logger = logging.getLogger(__name__)


class EmailNotifier:
    """
    Notification collaborator. Delivery belongs to an external mail
    provider; this adapter records what would be sent.

    Recipient addresses are only logged at DEBUG.
    """

    def send_confirmation_email(
        self,
        booking_code: str,
        customer_email: str,
        customer_name: str,
    ) -> None:
        logger.info("Sending booking confirmation. booking_code=%s", booking_code)
        logger.debug("Booking confirmation recipient. booking_code=%s to=%s", booking_code, customer_email)

    def send_ticket_confirmation(
        self,
        user_id: str,
        order_number: str,
        ticket_count: int,
        total_amount: int,
    ) -> None:
        logger.info(
            "Sending ticket confirmation. order_number=%s tickets=%s total=%s",
            order_number,
            ticket_count,
            total_amount,
        )

    def send_group_invitation(
        self,
        recipient_email: str,
        recipient_name: str,
        inviter_name: str,
        group_name: str,
        invite_code: str,
    ) -> None:
        logger.info("Sending group invitation. invite_code=%s", invite_code)
        logger.debug(
            "Group invitation recipient. invite_code=%s to=%s group=%s",
            invite_code,
            recipient_email,
            group_name,
        )
