from roombook.core.enums import ContingencyFlag
from roombook.services.contingency_service import ContingencyService
from roombook.services.notification_service import NotificationService


class RecordingSender:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send_booking_confirmation(self, booking):
        if self.fail:
            raise ConnectionError("smtp down")
        self.sent.append(booking.id)


class TestSendBookingConfirmation:
    def test_sends(self, db, make_booking, room, user_id, window):
        booking = make_booking(user_id, room, *window(10))
        sender = RecordingSender()
        assert NotificationService(db, sender=sender).send_booking_confirmation(booking)
        assert sender.sent == [booking.id]

    def test_skipped_when_emails_disabled(self, db, make_booking, room, user_id, window):
        ContingencyService(db).set_flag(ContingencyFlag.DISABLE_EMAILS, True)
        booking = make_booking(user_id, room, *window(10))
        sender = RecordingSender()

        assert not NotificationService(db, sender=sender).send_booking_confirmation(booking)
        assert sender.sent == []

    def test_sender_failure_is_not_fatal(self, db, make_booking, room, user_id, window):
        booking = make_booking(user_id, room, *window(10))
        service = NotificationService(db, sender=RecordingSender(fail=True))
        assert service.send_booking_confirmation(booking) is False
