from __future__ import annotations

from uuid import uuid4

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.urls import reverse

from apps.tally.saga import apply_adjustment


class TallyAdminTests(TestCase):
    def setUp(self) -> None:
        user = get_user_model().objects.create_superuser("admin", "admin@example.com", "pw")
        self.client.force_login(user)
        self.result = apply_adjustment(uuid4(), "TC-ADMIN", rows=[{"location": "A1", "qty": 3}])

    def test_changelists_and_detail_render(self):
        for name in ("tallycardentry", "tallycardentrylocation", "tallycardpointer"):
            with self.subTest(model=name):
                resp = self.client.get(reverse(f"admin:tally_{name}_changelist"))
                self.assertEqual(resp.status_code, 200)

        resp = self.client.get(reverse("admin:tally_tallycardentry_change", args=[self.result.version_id]))
        self.assertEqual(resp.status_code, 200)
        self.assertContains(resp, "TC-ADMIN")

        resp = self.client.get(reverse("admin:audit_auditevent_changelist"))
        self.assertEqual(resp.status_code, 200)

    def test_tables_are_browse_only(self):
        for name in ("tallycardentry", "tallycardentrylocation", "tallycardpointer"):
            with self.subTest(model=name):
                resp = self.client.get(reverse(f"admin:tally_{name}_add"))
                self.assertEqual(resp.status_code, 403)
