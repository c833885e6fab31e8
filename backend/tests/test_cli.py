"""
CLI command tests (flask system/users/coupons groups).
"""

from storefront.models import Coupon, User


class TestUserCommands:

    def test_seed_admin_creates_then_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        args = ["system", "seed-admin", "--email", "root@example.com", "--password", "Password123!"]

        result = runner.invoke(args=args)
        assert "PASS Created admin" in result.output

        result = runner.invoke(args=args)
        assert "is an admin" in result.output
        assert db_session.query(User).filter_by(role="admin").count() == 1

    def test_create_reseller(self, app, db_session):
        result = app.test_cli_runner().invoke(args=[
            "users", "create",
            "--name", "Bulk Buyer",
            "--email", "bulk@example.com",
            "--password", "Password123!",
            "--role", "reseller",
        ])
        assert "PASS Created user" in result.output
        user = db_session.query(User).filter_by(email="bulk@example.com").one()
        assert user.role == "reseller"
        assert user.reseller_status == "approved"

    def test_create_user_weak_password(self, app, db_session):
        result = app.test_cli_runner().invoke(args=[
            "users", "create", "--name", "Weak", "--email", "weak@example.com", "--password", "weak",
        ])
        assert result.exit_code == 1
        assert "FAIL" in result.output


class TestCouponCommands:

    def test_create_list_deactivate(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["coupons", "create", "--code", "launch", "--value", "15", "--days", "7"])
        assert "PASS Created coupon LAUNCH" in result.output

        result = runner.invoke(args=["coupons", "list"])
        assert "LAUNCH" in result.output

        result = runner.invoke(args=["coupons", "deactivate", "launch"])
        assert "PASS Deactivated coupon LAUNCH" in result.output
        assert db_session.query(Coupon).filter_by(code="LAUNCH").one().is_active is False

    def test_invalid_percentage(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["coupons", "create", "--code", "HUGE", "--value", "120"])
        assert result.exit_code == 1
        assert "FAIL" in result.output

    def test_deactivate_unknown(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["coupons", "deactivate", "GHOST"])
        assert result.exit_code == 1
