from sqlalchemy import select

from rentdesk.config import settings
from rentdesk.db import SessionLocal, engine
from rentdesk.models import Base, Branch, Customer, Profile, StaffRole
from rentdesk.services.branch_service import create_branch
from rentdesk.services.customer_service import create_customer
from rentdesk.services.staff_service import create_staff


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        main_branch = db.execute(select(Branch).where(Branch.name == settings.main_branch_name)).scalar_one_or_none()
        if not main_branch:
            main_branch = create_branch(db, name=settings.main_branch_name, address='Main Road', phone='9000000000')

        second_branch = db.execute(select(Branch).where(Branch.name == 'City Centre')).scalar_one_or_none()
        if not second_branch:
            second_branch = create_branch(db, name='City Centre', address='Market Street')

        admin = db.execute(select(Profile).where(Profile.username == 'admin')).scalar_one_or_none()
        if not admin:
            create_staff(
                db,
                username='admin',
                password='adminpass',
                role=StaffRole.SUPER_ADMIN,
                full_name='Owner',
                phone='9000000001',
            )

        manager = db.execute(select(Profile).where(Profile.username == 'citymanager')).scalar_one_or_none()
        if not manager:
            create_staff(
                db,
                username='citymanager',
                password='managerpass',
                role=StaffRole.BRANCH_ADMIN,
                full_name='City Manager',
                phone='9000000002',
                branch_id=second_branch.id,
            )

        counter = db.execute(select(Profile).where(Profile.username == 'counter1')).scalar_one_or_none()
        if not counter:
            create_staff(
                db,
                username='counter1',
                password='counterpass',
                role=StaffRole.STAFF,
                full_name='Counter Staff',
                phone='9000000003',
                branch_id=main_branch.id,
            )

        customer = db.execute(select(Customer).where(Customer.phone == '9876543210')).scalar_one_or_none()
        if not customer:
            create_customer(db, name='Demo Customer', phone='9876543210', address='12 Lake View')

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
