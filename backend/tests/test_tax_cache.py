import unittest

from tradebook import create_app
from tradebook.extensions import db
from tradebook.models import TaxCode
from tradebook.services.calculator import TaxRule
from tradebook.services.tax_service import (
    TaxCodeCache,
    deactivate_tax_code,
    get_tax_cache,
    list_tax_codes,
    save_tax_code,
)
from tradebook.errors import NotFoundError, ValidationFailedError


class CountingLoader:
    def __init__(self, rules):
        self.rules = rules
        self.calls = []

    def __call__(self, code):
        self.calls.append(code)
        return self.rules.get(code)


class TaxCodeCacheTests(unittest.TestCase):
    def setUp(self):
        self.loader = CountingLoader({"GST18": TaxRule(code="GST18", rate_bps=1800)})
        self.cache = TaxCodeCache(loader=self.loader)

    def test_get_reads_through_once(self):
        first = self.cache.get("GST18")
        second = self.cache.get("GST18")

        self.assertEqual(first.rate_bps, 1800)
        self.assertIs(first, second)
        self.assertEqual(self.loader.calls, ["GST18"])
        self.assertEqual(len(self.cache), 1)

    def test_misses_are_not_cached(self):
        self.assertIsNone(self.cache.get("NOPE"))
        self.loader.rules["NOPE"] = TaxRule(code="NOPE", rate_bps=100)
        self.assertEqual(self.cache.get("NOPE").rate_bps, 100)

    def test_invalidate_one_code(self):
        self.cache.get("GST18")
        self.loader.rules["GST18"] = TaxRule(code="GST18", rate_bps=1700)

        self.assertEqual(self.cache.get("GST18").rate_bps, 1800)
        self.cache.invalidate("GST18")
        self.assertEqual(self.cache.get("GST18").rate_bps, 1700)

    def test_invalidate_all(self):
        self.cache.get("GST18")
        self.cache.invalidate()
        self.assertEqual(len(self.cache), 0)

    def test_write_during_load_is_not_lost(self):
        cache = None
        rules = {"GST18": TaxRule(code="GST18", rate_bps=1800)}
        writes = []

        def loader(code):
            loaded = rules.get(code)
            if not writes:
                # a rate change commits and invalidates while this read is in flight
                writes.append(code)
                rules[code] = TaxRule(code=code, rate_bps=1700)
                cache.invalidate(code)
            return loaded

        cache = TaxCodeCache(loader=loader)

        self.assertEqual(cache.get("GST18").rate_bps, 1800)
        self.assertEqual(len(cache), 0)
        self.assertEqual(cache.get("GST18").rate_bps, 1700)
        self.assertEqual(cache.get("GST18").rate_bps, 1700)
        self.assertEqual(len(cache), 1)

    def test_invalidate_all_during_load_is_not_lost(self):
        cache = None

        def loader(code):
            cache.invalidate()
            return TaxRule(code=code, rate_bps=1800)

        cache = TaxCodeCache(loader=loader)
        cache.get("GST18")

        self.assertEqual(len(cache), 0)


class TaxServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "SECRET_KEY": "test",
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "TESTING": True,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(TaxCode).delete()
        db.session.commit()
        get_tax_cache().invalidate()

    def test_save_invalidates_cached_rule(self):
        save_tax_code(code="gst18", name="GST", rate_bps=1800)
        cache = get_tax_cache()
        self.assertEqual(cache.get("GST18").rate_bps, 1800)

        save_tax_code(code="GST18", name="GST", rate_bps=1700)

        self.assertEqual(cache.get("GST18").rate_bps, 1700)

    def test_deactivated_code_disappears(self):
        save_tax_code(code="FED", name="Excise", rate_bps=1000, is_compound=True)
        self.assertTrue(get_tax_cache().get("FED").is_compound)

        deactivate_tax_code("FED")

        self.assertIsNone(get_tax_cache().get("FED"))
        self.assertEqual(list_tax_codes(), [])
        self.assertEqual([t.code for t in list_tax_codes(include_inactive=True)], ["FED"])

    def test_deactivate_unknown_code(self):
        with self.assertRaises(NotFoundError):
            deactivate_tax_code("NOPE")

    def test_validation(self):
        with self.assertRaises(ValidationFailedError):
            save_tax_code(code="BAD", name="Too high", rate_bps=10001)
        with self.assertRaises(ValidationFailedError):
            save_tax_code(code="BAD", name="Bad type", rate_bps=100, tax_type="VAT")
        with self.assertRaises(ValidationFailedError):
            save_tax_code(code="BAD", name="Bad side", rate_bps=100, applies_to="everyone")
        with self.assertRaises(ValidationFailedError):
            save_tax_code(code="", name="No code", rate_bps=100)


if __name__ == "__main__":
    unittest.main()
