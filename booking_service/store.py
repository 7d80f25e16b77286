import logging
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from seat_engine.errors import ConcurrentModification, StoreUnavailable
from seat_engine.inventory import CoachClassInventory
from seat_engine.models import (
    BerthInterval, Booking, BookingStatus, CancelReason, InventoryKey, WaitlistTicket, utcnow,
)
from seat_engine.store import InventoryStore

from .models import BookingRecord, IntervalRecord, InventoryRecord, TicketRecord

logger = logging.getLogger(__name__)


def _key_of(record: InventoryRecord) -> InventoryKey:
    return InventoryKey(record.train_id, record.journey_date, record.coach_class)


def _seats_to_text(seats) -> str:
    return ",".join(str(seat) for seat in seats)


def _seats_from_text(text: Optional[str]) -> List[int]:
    return [int(seat) for seat in text.split(",")] if text else []


class SqlInventoryStore(InventoryStore):
    """InventoryStore over SQLAlchemy; one transaction per load or save.

    ``save`` bumps ``coach_class_inventories.version`` with a conditional
    UPDATE and rewrites the child rows in the same transaction, so two
    writers holding the same version cannot both succeed.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def load(self, key):
        db = self.session_factory()
        try:
            record = self._find(db, key)
            if record is None:
                return None
            return self._to_inventory(db, record)
        except SQLAlchemyError as e:
            logger.error(f"Error loading inventory {key}: {str(e)}")
            raise StoreUnavailable(f"Could not load inventory {key}", key=str(key)) from e
        finally:
            db.close()

    def save(self, inventory):
        db = self.session_factory()
        try:
            record = self._find(db, inventory.key)
            if record is None:
                if inventory.version != 0:
                    raise ConcurrentModification(
                        f"Inventory {inventory.key} no longer exists",
                        key=str(inventory.key),
                    )
                record = InventoryRecord(
                    train_id=inventory.key.train_id,
                    journey_date=inventory.key.journey_date,
                    coach_class=inventory.key.coach_class,
                    capacity=inventory.capacity,
                    next_ticket_seq=inventory.next_ticket_seq,
                    version=1,
                    updated_at=utcnow(),
                )
                db.add(record)
                db.flush()
            else:
                updated = db.query(InventoryRecord).filter(
                    InventoryRecord.id == record.id,
                    InventoryRecord.version == inventory.version,
                ).update(
                    {
                        InventoryRecord.version: InventoryRecord.version + 1,
                        InventoryRecord.next_ticket_seq: inventory.next_ticket_seq,
                        InventoryRecord.updated_at: utcnow(),
                    },
                    synchronize_session=False,
                )
                if updated == 0:
                    raise ConcurrentModification(
                        f"Inventory {inventory.key} changed since version {inventory.version}",
                        key=str(inventory.key),
                        expected=inventory.version,
                    )
                for model in (IntervalRecord, BookingRecord, TicketRecord):
                    db.query(model).filter(model.inventory_id == record.id).delete(
                        synchronize_session=False
                    )

            self._write_children(db, record.id, inventory)
            db.commit()
            inventory.version += 1
            return inventory.version
        except ConcurrentModification:
            db.rollback()
            raise
        except IntegrityError as e:
            db.rollback()
            raise ConcurrentModification(
                f"Inventory {inventory.key} was created concurrently",
                key=str(inventory.key),
            ) from e
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error saving inventory {inventory.key}: {str(e)}")
            raise StoreUnavailable(
                f"Could not save inventory {inventory.key}", key=str(inventory.key)
            ) from e
        finally:
            db.close()

    def locate_booking(self, booking_id):
        db = self.session_factory()
        try:
            record = (
                db.query(InventoryRecord)
                .join(BookingRecord, BookingRecord.inventory_id == InventoryRecord.id)
                .filter(BookingRecord.booking_id == booking_id)
                .first()
            )
            return _key_of(record) if record else None
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Could not look up booking {booking_id}") from e
        finally:
            db.close()

    def keys(self):
        db = self.session_factory()
        try:
            return [_key_of(record) for record in db.query(InventoryRecord).all()]
        except SQLAlchemyError as e:
            raise StoreUnavailable("Could not list inventories") from e
        finally:
            db.close()

    # ── Mapping ──

    @staticmethod
    def _find(db: Session, key: InventoryKey) -> Optional[InventoryRecord]:
        return db.query(InventoryRecord).filter(
            InventoryRecord.train_id == key.train_id,
            InventoryRecord.journey_date == key.journey_date,
            InventoryRecord.coach_class == key.coach_class,
        ).first()

    @staticmethod
    def _to_inventory(db: Session, record: InventoryRecord) -> CoachClassInventory:
        key = _key_of(record)
        intervals = [
            BerthInterval(
                seat=row.seat,
                from_order=row.from_order,
                to_order=row.to_order,
                booking_id=row.booking_id,
                status=BookingStatus(row.status),
            )
            for row in db.query(IntervalRecord)
            .filter(IntervalRecord.inventory_id == record.id)
            .order_by(IntervalRecord.id)
        ]
        bookings = {
            row.booking_id: Booking(
                booking_id=row.booking_id,
                key=key,
                from_order=row.from_order,
                to_order=row.to_order,
                seat_count=row.seat_count,
                status=BookingStatus(row.status),
                created_at=row.created_at,
                seats=_seats_from_text(row.seats),
                expires_at=row.expires_at,
                ticket_sequence=row.ticket_sequence,
                updated_at=row.updated_at,
                cancel_reason=CancelReason(row.cancel_reason) if row.cancel_reason else None,
            )
            for row in db.query(BookingRecord)
            .filter(BookingRecord.inventory_id == record.id)
            .order_by(BookingRecord.created_at)
        }
        waitlist = [
            WaitlistTicket(
                sequence=row.sequence,
                booking_id=row.booking_id,
                from_order=row.from_order,
                to_order=row.to_order,
                seat_count=row.seat_count,
                created_at=row.created_at,
            )
            for row in db.query(TicketRecord)
            .filter(TicketRecord.inventory_id == record.id)
            .order_by(TicketRecord.sequence)
        ]
        return CoachClassInventory(
            key=key,
            capacity=record.capacity,
            intervals=intervals,
            bookings=bookings,
            waitlist=waitlist,
            next_ticket_seq=record.next_ticket_seq,
            version=record.version,
        )

    @staticmethod
    def _write_children(db: Session, inventory_id: int, inventory: CoachClassInventory):
        db.add_all([
            IntervalRecord(
                inventory_id=inventory_id,
                seat=i.seat,
                from_order=i.from_order,
                to_order=i.to_order,
                booking_id=i.booking_id,
                status=i.status.value,
            )
            for i in inventory.intervals
        ])
        db.add_all([
            BookingRecord(
                booking_id=b.booking_id,
                inventory_id=inventory_id,
                from_order=b.from_order,
                to_order=b.to_order,
                seat_count=b.seat_count,
                status=b.status.value,
                seats=_seats_to_text(b.seats),
                ticket_sequence=b.ticket_sequence,
                created_at=b.created_at,
                updated_at=b.updated_at,
                expires_at=b.expires_at,
                cancel_reason=b.cancel_reason.value if b.cancel_reason else None,
            )
            for b in inventory.bookings.values()
        ])
        db.add_all([
            TicketRecord(
                inventory_id=inventory_id,
                sequence=t.sequence,
                booking_id=t.booking_id,
                from_order=t.from_order,
                to_order=t.to_order,
                seat_count=t.seat_count,
                created_at=t.created_at,
            )
            for t in inventory.waitlist
        ])
