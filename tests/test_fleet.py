"""Vehicle and user management tests."""

import pytest
from sqlalchemy import select

from src.config import SystemAccount, settings
from src.domain.enums import (
    DriverStatus,
    NotificationEvent,
    UserRole,
    VehicleStatus,
    VehicleType,
)
from src.domain.errors import (
    FleetValidationError,
    PermissionDenied,
    UserNotFound,
    VehicleNotFound,
)
from src.infrastructure.models import NotificationModel, UserModel
from src.infrastructure.repositories import RideRepository
from src.services.bootstrap import ensure_system_accounts
from src.services.fleet import FleetService, hash_password, verify_password
from src.services.rides import RideService
from tests.conftest import actor_of, book


class TestPasswords:
    def test_hash_round_trip(self):
        hashed = hash_password("s3cret-pass", rounds=4)
        assert hashed != "s3cret-pass"
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("wrong", hashed)

    def test_garbage_hash_does_not_verify(self):
        assert verify_password("anything", "not-a-real-hash") is False


class TestVehicles:
    @pytest.mark.asyncio
    async def test_create_normalises_number(self, db_session, fleet):
        service = FleetService(db_session)
        vehicle = await service.create_vehicle(
            actor_of(fleet["admin"]), " nc-3888 ", VehicleType.VAN
        )

        assert vehicle.vehicle_number == "NC-3888"
        assert vehicle.status == VehicleStatus.AVAILABLE
        assert vehicle.total_mileage == 0

    @pytest.mark.asyncio
    async def test_duplicate_number(self, db_session, fleet):
        service = FleetService(db_session)
        with pytest.raises(FleetValidationError, match="already exists"):
            await service.create_vehicle(actor_of(fleet["admin"]), "nb-1985")

    @pytest.mark.asyncio
    async def test_only_admin_manages_vehicles(self, db_session, fleet):
        service = FleetService(db_session)
        with pytest.raises(PermissionDenied):
            await service.create_vehicle(actor_of(fleet["pm"]), "KH-5330")

    @pytest.mark.asyncio
    async def test_maintenance_blocked_while_assigned(self, db_session, fleet):
        rides = RideService(db_session)
        ride = await book(rides, fleet["user"])
        await rides.admin_approve(ride.id, actor_of(fleet["admin"]))
        await rides.assign(
            ride.id, actor_of(fleet["admin"]), fleet["driver"].id, fleet["vehicle"].id
        )

        service = FleetService(db_session)
        with pytest.raises(FleetValidationError, match="active rides"):
            await service.set_maintenance(actor_of(fleet["admin"]), fleet["vehicle"].id)
        with pytest.raises(FleetValidationError):
            await service.delete_vehicle(actor_of(fleet["admin"]), fleet["vehicle"].id)

    @pytest.mark.asyncio
    async def test_busy_cannot_be_set_by_hand(self, db_session, fleet):
        service = FleetService(db_session)
        with pytest.raises(FleetValidationError, match="ride assignment"):
            await service.update_vehicle(
                actor_of(fleet["admin"]), fleet["vehicle"].id, status=VehicleStatus.BUSY
            )

    @pytest.mark.asyncio
    async def test_maintenance_round_trip(self, db_session, fleet):
        service = FleetService(db_session)
        admin = actor_of(fleet["admin"])

        await service.set_maintenance(admin, fleet["vehicle"].id)
        counts = await service.vehicle_counts()
        assert counts["maintenance"] == 1
        assert counts["available"] == 1
        assert counts["total"] == 2

        vehicle = await service.update_vehicle(
            admin, fleet["vehicle"].id, status=VehicleStatus.AVAILABLE
        )
        assert vehicle.status == VehicleStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_soft_delete_hides_vehicle(self, db_session, fleet):
        service = FleetService(db_session)
        await service.delete_vehicle(actor_of(fleet["admin"]), fleet["vehicle2"].id)

        assert fleet["vehicle2"].is_active is False
        assert [v.id for v in await service.list_vehicles()] == [fleet["vehicle"].id]
        with pytest.raises(VehicleNotFound):
            await service.get_vehicle(fleet["vehicle2"].id)

    @pytest.mark.asyncio
    async def test_monthly_reset(self, db_session, fleet):
        fleet["vehicle"].monthly_mileage = 120.0
        fleet["vehicle"].total_mileage = 900.0
        service = FleetService(db_session)

        assert await service.reset_monthly_mileage(actor_of(fleet["admin"])) == 2

        assert fleet["vehicle"].monthly_mileage == 0
        assert fleet["vehicle"].total_mileage == 900.0
        assert fleet["vehicle"].last_mileage_reset is not None


class TestUsers:
    @pytest.mark.asyncio
    async def test_create_driver(self, db_session, fleet):
        service = FleetService(db_session)
        driver = await service.create_user(
            actor_of(fleet["admin"]),
            name="Driver 5",
            email="Driver5@Fleet.Local",
            phone="0775555555",
            password="long-enough",
            role=UserRole.DRIVER,
        )

        assert driver.email == "driver5@fleet.local"
        assert driver.status == DriverStatus.AVAILABLE
        assert verify_password("long-enough", driver.password_hash)
        assert driver in await service.list_drivers()

    @pytest.mark.asyncio
    async def test_list_users_filters_and_pages(self, db_session, fleet):
        service = FleetService(db_session)
        admin = actor_of(fleet["admin"])

        users, total = await service.list_users(admin)
        assert total == 6
        assert users[0].id == fleet["driver2"].id

        drivers, total = await service.list_users(admin, role=UserRole.DRIVER)
        assert total == 2
        assert {u.id for u in drivers} == {fleet["driver"].id, fleet["driver2"].id}

        found, total = await service.list_users(admin, search="AYESHA")
        assert total == 1
        assert found == [fleet["other_user"]]

        page_two, total = await service.list_users(admin, page=2, limit=4)
        assert total == 6
        assert len(page_two) == 2

        fleet["driver2"].status = DriverStatus.OFFLINE
        offline, _ = await service.list_users(admin, status=DriverStatus.OFFLINE)
        assert offline == [fleet["driver2"]]

        with pytest.raises(PermissionDenied):
            await service.list_users(actor_of(fleet["pm"]))

    @pytest.mark.asyncio
    async def test_search_treats_wildcards_literally(self, db_session, fleet):
        service = FleetService(db_session)
        _, total = await service.list_users(actor_of(fleet["admin"]), search="%")
        assert total == 0

    @pytest.mark.asyncio
    async def test_user_counts(self, db_session, fleet):
        service = FleetService(db_session)
        fleet["driver2"].status = DriverStatus.OFFLINE

        counts = await service.user_counts(actor_of(fleet["admin"]))

        assert counts == {
            "user": 2,
            "driver": 2,
            "admin": 1,
            "project_manager": 1,
            "total": 6,
            "available_drivers": 1,
        }

    @pytest.mark.asyncio
    async def test_project_manager_cannot_be_created(self, db_session, fleet):
        service = FleetService(db_session)
        with pytest.raises(FleetValidationError, match="Invalid role"):
            await service.create_user(
                actor_of(fleet["admin"]),
                name="Second PM",
                email="pm2@fleet.local",
                phone="0779999999",
                password="long-enough",
                role=UserRole.PROJECT_MANAGER,
            )

    @pytest.mark.asyncio
    async def test_duplicate_email(self, db_session, fleet):
        service = FleetService(db_session)
        with pytest.raises(FleetValidationError, match="Email already registered"):
            await service.create_user(
                actor_of(fleet["admin"]),
                name="Copy",
                email=fleet["user"].email.upper(),
                phone="0778888888",
                password="long-enough",
            )

    @pytest.mark.asyncio
    async def test_driver_status_locked_while_on_a_ride(self, db_session, fleet):
        rides = RideService(db_session)
        ride = await book(rides, fleet["user"])
        await rides.admin_approve(ride.id, actor_of(fleet["admin"]))
        await rides.assign(
            ride.id, actor_of(fleet["admin"]), fleet["driver"].id, fleet["vehicle"].id
        )

        service = FleetService(db_session)
        with pytest.raises(FleetValidationError, match="active rides"):
            await service.update_user(
                actor_of(fleet["admin"]), fleet["driver"].id, status=DriverStatus.OFFLINE
            )
        updated = await service.update_user(
            actor_of(fleet["admin"]), fleet["driver2"].id, status=DriverStatus.OFFLINE
        )
        assert updated.status == DriverStatus.OFFLINE

    @pytest.mark.asyncio
    async def test_driver_busy_cannot_be_set_by_hand(self, db_session, fleet):
        service = FleetService(db_session)
        with pytest.raises(FleetValidationError, match="ride assignment"):
            await service.update_user(
                actor_of(fleet["admin"]), fleet["driver"].id, status=DriverStatus.BUSY
            )

        assert fleet["driver"].status == DriverStatus.AVAILABLE
        assert await RideRepository(db_session).count_active_for_driver(
            fleet["driver"].id
        ) == 0

    @pytest.mark.asyncio
    async def test_user_with_history_cannot_be_deleted(self, db_session, fleet):
        await book(RideService(db_session), fleet["user"])
        service = FleetService(db_session)
        with pytest.raises(FleetValidationError, match="ride history"):
            await service.delete_user(actor_of(fleet["admin"]), fleet["user"].id)

    @pytest.mark.asyncio
    async def test_delete_user_clears_inbox(self, db_session, fleet):
        db_session.add(
            NotificationModel(
                recipient_id=fleet["other_user"].id,
                event=NotificationEvent.RIDE_CREATED,
                title="hello",
                message="hello",
            )
        )
        await db_session.flush()
        service = FleetService(db_session)

        await service.delete_user(actor_of(fleet["admin"]), fleet["other_user"].id)

        remaining = await db_session.execute(select(NotificationModel))
        assert remaining.scalars().all() == []
        with pytest.raises(UserNotFound):
            await service.get_user(fleet["other_user"].id)

    @pytest.mark.asyncio
    async def test_admin_cannot_delete_self(self, db_session, fleet):
        service = FleetService(db_session)
        with pytest.raises(FleetValidationError, match="own account"):
            await service.delete_user(actor_of(fleet["admin"]), fleet["admin"].id)


class TestSystemAccounts:
    ACCOUNTS = [
        SystemAccount(
            name="Fleet Admin",
            email="Root@Fleet.Local",
            phone="0770000001",
            password="first-password",
            role="admin",
        )
    ]

    @pytest.mark.asyncio
    async def test_accounts_are_upserted(self, db_session, monkeypatch):
        monkeypatch.setattr(settings, "bcrypt_rounds", 4)

        [admin] = await ensure_system_accounts(db_session, self.ACCOUNTS)
        assert admin.email == "root@fleet.local"
        assert admin.is_hardcoded is True
        first_hash = admin.password_hash

        # a second run keeps the row and the still-valid hash
        [again] = await ensure_system_accounts(db_session, self.ACCOUNTS)
        assert again.id == admin.id
        assert again.password_hash == first_hash

        rotated = [self.ACCOUNTS[0].model_copy(update={"password": "second-password"})]
        await ensure_system_accounts(db_session, rotated)
        assert verify_password("second-password", admin.password_hash)

        result = await db_session.execute(select(UserModel))
        assert len(result.scalars().all()) == 1

    @pytest.mark.asyncio
    async def test_system_accounts_are_protected(self, db_session, fleet, monkeypatch):
        monkeypatch.setattr(settings, "bcrypt_rounds", 4)
        [root] = await ensure_system_accounts(db_session, self.ACCOUNTS)
        service = FleetService(db_session)

        with pytest.raises(FleetValidationError, match="cannot be modified"):
            await service.update_user(actor_of(fleet["admin"]), root.id, name="Renamed")
        with pytest.raises(FleetValidationError, match="cannot be deleted"):
            await service.delete_user(actor_of(fleet["admin"]), root.id)
