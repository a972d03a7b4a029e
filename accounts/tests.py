from django.urls import reverse
from rest_framework.test import APITestCase
from rest_framework import status
from django.contrib.auth import get_user_model

User = get_user_model()


# -------------------------
# User Manager Tests
# -------------------------
class UserManagerTests(APITestCase):

    def test_create_user_defaults_to_tenant(self):
        user = User.objects.create_user(email="Tenant@RentDesk.test", password="pass123")

        self.assertEqual(user.email, "tenant@rentdesk.test")
        self.assertEqual(user.role, "TENANT")
        self.assertFalse(user.is_property_admin)
        self.assertEqual(user.display_name, "tenant@rentdesk.test")

    def test_create_superuser_is_admin(self):
        user = User.objects.create_superuser(email="root@rentdesk.test", password="pass123")

        self.assertEqual(user.role, "ADMIN")
        self.assertTrue(user.is_staff)
        self.assertTrue(user.is_property_admin)

    def test_email_is_required(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(email="", password="pass123")


# -------------------------
# Token Tests
# -------------------------
class TokenTests(APITestCase):

    def setUp(self):
        User.objects.create_user(
            email="tenant@rentdesk.test",
            password="TenantPass123!",
            first_name="Meera",
        )

    def test_obtain_token_with_email(self):
        url = reverse("token-obtain-pair")
        response = self.client.post(
            url, {"email": "tenant@rentdesk.test", "password": "TenantPass123!"}
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn("access", response.data)
        self.assertIn("refresh", response.data)

    def test_wrong_password_is_rejected(self):
        url = reverse("token-obtain-pair")
        response = self.client.post(
            url, {"email": "tenant@rentdesk.test", "password": "wrong"}
        )

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_access_token_reaches_protected_endpoint(self):
        token = self.client.post(
            reverse("token-obtain-pair"),
            {"email": "tenant@rentdesk.test", "password": "TenantPass123!"},
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

        response = self.client.get(reverse("notification-list"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
