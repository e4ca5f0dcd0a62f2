from fastapi import BackgroundTasks, Depends
from sqlmodel import Session

from .application.ports.notifier import Notifier
from .application.services.booking_service import BookingService
from .application.services.eta_service import EtaService
from .application.services.notifications import QueueNotifications
from .application.services.progress_service import ProgressService
from .application.services.schedule_service import ScheduleService
from .application.services.status_service import StatusService
from .application.services.token_allocator import TokenAllocator
from .application.services.wallet_service import WalletService
from .database import engine, get_session
from .infrastructure.notifications.background_notifier import BackgroundNotifier
from .infrastructure.notifications.db_notifier import DbNotifier
from .infrastructure.persistence.sqlalchemy.repositories.queue_repository_sql import SqlQueueRepository
from .infrastructure.persistence.sqlalchemy.repositories.wallet_repository_sql import SqlWalletRepository


def get_notifier(background_tasks: BackgroundTasks) -> Notifier:
    return BackgroundNotifier(DbNotifier(engine), background_tasks)


def get_queue_repository(session: Session = Depends(get_session)) -> SqlQueueRepository:
    return SqlQueueRepository(session)


def get_wallet_repository(session: Session = Depends(get_session)) -> SqlWalletRepository:
    # same request session as the queue repository, so payments and bookings commit together
    return SqlWalletRepository(session)


def get_notifications(notifier: Notifier = Depends(get_notifier)) -> QueueNotifications:
    return QueueNotifications(notifier)


def get_eta_service(
    repo: SqlQueueRepository = Depends(get_queue_repository),
    notifications: QueueNotifications = Depends(get_notifications),
) -> EtaService:
    return EtaService(repo, notifications=notifications)


def get_wallet_service(
    repo: SqlWalletRepository = Depends(get_wallet_repository),
    queue_repo: SqlQueueRepository = Depends(get_queue_repository),
    notifications: QueueNotifications = Depends(get_notifications),
) -> WalletService:
    return WalletService(repo, queue_repo=queue_repo, notifications=notifications)


def get_booking_service(
    repo: SqlQueueRepository = Depends(get_queue_repository),
    eta: EtaService = Depends(get_eta_service),
    wallet: WalletService = Depends(get_wallet_service),
) -> BookingService:
    return BookingService(repo, TokenAllocator(repo), eta, wallet=wallet)


def get_status_service(
    repo: SqlQueueRepository = Depends(get_queue_repository),
    eta: EtaService = Depends(get_eta_service),
    wallet: WalletService = Depends(get_wallet_service),
    notifications: QueueNotifications = Depends(get_notifications),
) -> StatusService:
    return StatusService(repo, eta, wallet=wallet, notifications=notifications)


def get_progress_service(
    repo: SqlQueueRepository = Depends(get_queue_repository),
    eta: EtaService = Depends(get_eta_service),
) -> ProgressService:
    return ProgressService(repo, eta)


def get_schedule_service(
    repo: SqlQueueRepository = Depends(get_queue_repository),
    wallet: WalletService = Depends(get_wallet_service),
    eta: EtaService = Depends(get_eta_service),
    notifications: QueueNotifications = Depends(get_notifications),
) -> ScheduleService:
    return ScheduleService(repo, wallet, eta, notifications=notifications)
