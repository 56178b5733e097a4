import logging
import sys
from decimal import Decimal
from sqlalchemy import text
from auth.database import engine, Base, SessionLocal, init_db
from auth.core.enums import UserRole, VehicleType
from auth.services.auth_service import ensure_admin_user
from parking.commands import Actor, CreateLotCommand, LotRateCommand
from parking.services import create_lot

logger = logging.getLogger("reset_db")

def reset_database():
    with engine.begin() as conn:
        dialect = conn.dialect.name
        if dialect == "mysql":
            conn.execute(text("SET FOREIGN_KEY_CHECKS=0"))
        Base.metadata.drop_all(bind=conn)
        if dialect == "mysql":
            conn.execute(text("SET FOREIGN_KEY_CHECKS=1"))
    init_db()

def seed_demo_lot():
    # 需要配置 ADMIN_USERNAME / ADMIN_PASSWORD
    db = SessionLocal()
    try:
        admin = ensure_admin_user(db)
        if admin is None:
            logger.warning("no bootstrap admin configured, demo lot skipped")
            return None
        lot = create_lot(db, Actor(user_id=admin.id, role=UserRole.ADMIN), CreateLotCommand(
            name="示例停车场",
            address="示例路 1 号",
            hourly_rate=Decimal("10.00"),
            total_spaces=20,
            rates=[LotRateCommand(vehicle_type=VehicleType.LARGE, hourly_rate=Decimal("15.00"), description="大型车")],
        ))
        logger.info("demo lot %s created", lot.id)
        return lot
    finally:
        db.close()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    reset_database()
    logger.info("database dropped and recreated")
    if "--seed" in sys.argv[1:]:
        seed_demo_lot()
