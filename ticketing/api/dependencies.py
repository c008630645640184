from fastapi import Depends, Request

from ticketing.application.effects import PostCommitEffects
from ticketing.infrastructure.db.session import SessionLocal
from ticketing.infrastructure.notifications import EmailNotifier
from ticketing.infrastructure.payments.razorpay_gateway import RazorpayGateway
from ticketing.infrastructure.realtime.fanout import BookingFanout


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_fanout(request: Request) -> BookingFanout:
    return request.app.state.fanout


def get_gateway() -> RazorpayGateway:
    return RazorpayGateway()


def get_notifier() -> EmailNotifier:
    return EmailNotifier()


def get_effects(
    notifier: EmailNotifier = Depends(get_notifier),
    fanout: BookingFanout = Depends(get_fanout),
) -> PostCommitEffects:
    return PostCommitEffects(notifier=notifier, fanout=fanout)
