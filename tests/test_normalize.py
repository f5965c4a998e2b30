from customer_merge.steps.normalize import NameNormalizer, strip_legal_suffixes, strip_trailing_suffixes


def test_normalize_folds_case_punctuation_and_legal_suffixes() -> None:
    normalizer = NameNormalizer()

    assert normalizer.normalize("ACME Trading L.L.C.") == "acme trading"
    assert normalizer.normalize("Acme   Trading LLC") == "acme trading"
    assert normalizer.normalize("Café Royal") == "cafe royal"


def test_normalize_removes_contact_and_address_noise() -> None:
    normalizer = NameNormalizer()

    assert normalizer.normalize("Acme Trading LLC P.O. Box 12345") == "acme trading"
    assert normalizer.normalize("Acme Trading Tel: 04-1234567") == "acme trading"
    assert normalizer.normalize("Acme Trading, Shop No. 14") == "acme trading"
    assert normalizer.normalize("Acme Trading info@acme.ae") == "acme trading"


def test_normalize_expands_abbreviations() -> None:
    normalizer = NameNormalizer()

    assert normalizer.normalize("Gulf Intl Trdg Co") == normalizer.normalize("Gulf International Trading Company")


def test_normalize_never_empties_a_non_blank_name() -> None:
    normalizer = NameNormalizer()

    assert normalizer.normalize("LLC") == "llc"
    assert normalizer.normalize("12345") == "12345"
    assert normalizer.normalize("") == ""
    assert normalizer.normalize("   ") == ""


def test_location_stripping_is_opt_in() -> None:
    assert NameNormalizer().normalize("Acme Trading Dubai") == "acme trading dubai"
    assert NameNormalizer(strip_locations=True).normalize("Acme Trading Dubai") == "acme trading"


def test_normalize_is_deterministic_and_cached() -> None:
    normalizer = NameNormalizer(cache_size=16)

    first = normalizer.normalize("Blue Ocean Foodstuff Trading LLC")
    second = normalizer.normalize("Blue Ocean Foodstuff Trading LLC")

    assert first == second
    assert normalizer.cache_info().hits == 1


def test_core_brand_stops_at_descriptors_and_articles() -> None:
    normalizer = NameNormalizer()

    assert normalizer.core_brand("Falcon Technologies LLC") == "falcon"
    assert normalizer.core_brand("The Golden Sands General Trading") == "golden sands"


def test_suffix_helpers() -> None:
    assert strip_legal_suffixes("Acme Trading L.L.C.") == "acme trading"
    assert strip_trailing_suffixes("Acme Trading L.L.C.") == "Acme Trading"
    assert strip_trailing_suffixes("Acme Co Ltd") == "Acme"
    assert strip_trailing_suffixes("Acme Trading") == "Acme Trading"
