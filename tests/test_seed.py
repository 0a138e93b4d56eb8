"""Tests for the demo seeding routine."""

from revocity import areas, auth, seed


class TestSeedDemo:
    def test_seeds_admin_and_complaints(self, db, now):
        summary = seed.seed_demo(db, now, admin_id="seed-admin")
        assert summary == {"admin_id": "seed-admin", "created": 5, "skipped": 0}
        assert auth.is_admin(db, "seed-admin")
        assert db.complaints.count_documents({}) == 5

        sector = areas.get_area(db, "Sector 5")
        assert sector["overflow_count"] == 3
        assert sector["risk_level"] == "medium"
        assert areas.get_area(db, "Old Town")["total_complaints"] == 2

    def test_second_run_skips_complaints(self, db, now):
        seed.seed_demo(db, now, admin_id="seed-admin")
        summary = seed.seed_demo(db, now, admin_id="seed-admin")
        assert summary["created"] == 0
        assert summary["skipped"] == 5
        assert db.complaints.count_documents({}) == 5
