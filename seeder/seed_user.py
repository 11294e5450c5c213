# seeder/seed_user.py
import os

from service import auth_service
from util.env_store import get_setting


def seed_admin_user(app):
    """Tạo tài khoản đăng nhập từ ADMIN_USERNAME / ADMIN_PASSWORD nếu chưa có."""
    with app.app_context():
        username = os.getenv("ADMIN_USERNAME")
        raw_password = os.getenv("ADMIN_PASSWORD")

        if not username or not raw_password:
            print("❌ Thiếu ADMIN_USERNAME hoặc ADMIN_PASSWORD trong .env")
            return

        if get_setting("AUTH_PASSWORD_HASH"):
            print("⚠️ Tài khoản đăng nhập đã tồn tại, bỏ qua.")
            return

        auth_service.set_credentials(username, raw_password, enabled=True)
        print(f"✅ Đã tạo tài khoản đăng nhập: {username}")
