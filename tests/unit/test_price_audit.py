from concierge.state.evidence_state import (
    ExcursionEvidence,
    FlightEvidence,
    HotelEvidence,
    InsuranceEvidence,
    PriceEvidenceLedger,
    TransferEvidence,
)
from concierge.state.package_state import (
    ApproxTotal,
    AssistantReply,
    ExcursionDraft,
    ExcursionItem,
    FlightDraft,
    HotelDraft,
    InsuranceDraft,
    PackageDraft,
    PackageOption,
    TransferDraft,
)
from concierge.utils.costs import VerifiedCostBreakdown
from concierge.utils.price_audit import apply_price_audit, find_insurance_evidence


def _reply(approx_total=None, **services):
    return AssistantReply(
        message="Here is your package.",
        stage="proposing",
        package_options=[
            PackageOption(
                id="opt-1",
                title="Dubai week",
                summary="Beach and desert.",
                approx_total=approx_total,
                draft=PackageDraft(**services),
            )
        ],
    )


def _hotel_ledger(price=1000.0, currency="USD"):
    return PriceEvidenceLedger(
        hotels=[HotelEvidence(hotel_code="H1", hotel_name="Atlantis The Palm", price=price, currency=currency)]
    )


def test_verified_hotel_price_is_kept():
    reply = _reply(hotel=HotelDraft(hotel_code="H1", price=1000, currency="USD"))

    audited, audit = apply_price_audit(reply, _hotel_ledger())

    assert audited.package_options[0].draft.hotel.price == 1000
    assert audited.package_options[0].draft.hotel.currency == "USD"
    assert audit.status == "pass"
    assert audit.issues == []
    assert audit.checked_at.endswith("Z")


def test_mismatched_hotel_price_is_removed():
    reply = _reply(hotel=HotelDraft(hotel_code="H1", hotel_name="Atlantis", price=1000, currency="USD"))

    audited, audit = apply_price_audit(reply, _hotel_ledger(price=500.0))

    hotel = audited.package_options[0].draft.hotel
    assert hotel.price is None
    assert hotel.currency is None
    assert hotel.hotel_name == "Atlantis"
    assert audit.status == "fail"
    assert len(audit.issues) == 1
    issue = audit.issues[0]
    assert issue.option_id == "opt-1"
    assert issue.service == "hotel"
    assert issue.reason == "unverified_hotel_price_removed"
    assert issue.provided_amount == 1000
    assert issue.provided_currency == "USD"
    # The caller's reply is not modified.
    assert reply.package_options[0].draft.hotel.price == 1000


def test_hotel_price_needs_matching_currency_and_evidence():
    eur_reply = _reply(hotel=HotelDraft(hotel_code="H1", price=1000, currency="EUR"))
    no_currency_reply = _reply(hotel=HotelDraft(hotel_code="H1", price=1000))
    unknown_hotel_reply = _reply(hotel=HotelDraft(hotel_code="H9", hotel_name="Burj", price=1000, currency="USD"))

    for reply in (eur_reply, no_currency_reply, unknown_hotel_reply):
        audited, audit = apply_price_audit(reply, _hotel_ledger())
        assert audited.package_options[0].draft.hotel.price is None
        assert audit.status == "fail"


def test_hotel_matched_by_name_within_tolerance():
    reply = _reply(hotel=HotelDraft(hotel_name="atlantis", price=1020, currency="usd"))

    audited, audit = apply_price_audit(reply, _hotel_ledger())

    assert audited.package_options[0].draft.hotel.price == 1020
    assert audit.status == "pass"


def test_transfer_price_matches_one_way_or_return():
    ledger = PriceEvidenceLedger(
        transfers=[TransferEvidence(id="tr-1", vehicle_name="Sedan", one_way=40, return_price=75, currency="USD")]
    )
    return_reply = _reply(transfer=TransferDraft(selection_id="TR-1", price=75, currency="USD"))
    by_vehicle_reply = _reply(transfer=TransferDraft(label="Airport run", vehicle_name="sedan", price=40, currency="USD"))
    wrong_reply = _reply(transfer=TransferDraft(selection_id="tr-1", price=120, currency="USD"))

    assert apply_price_audit(return_reply, ledger)[1].status == "pass"
    assert apply_price_audit(by_vehicle_reply, ledger)[1].status == "pass"
    audited, audit = apply_price_audit(wrong_reply, ledger)
    assert audited.package_options[0].draft.transfer.price is None
    assert audit.issues[0].reason == "unverified_transfer_price_removed"


def test_flight_price_matched_by_id_or_route_and_date():
    ledger = PriceEvidenceLedger(
        flights=[
            FlightEvidence(
                id="FL-1",
                total_price=320,
                currency="USD",
                origin="EVN",
                destination="DXB",
                departure_date="2025-03-01",
            )
        ]
    )
    by_id = _reply(flight=FlightDraft(selection_id="fl-1", label="FZ", price=320, currency="USD"))
    by_route = _reply(
        flight=FlightDraft(origin="evn", destination="dxb", departure_date="2025-03-01", price=318, currency="USD")
    )
    wrong_date = _reply(
        flight=FlightDraft(origin="EVN", destination="DXB", departure_date="2025-03-02", price=320, currency="USD")
    )

    assert apply_price_audit(by_id, ledger)[1].status == "pass"
    assert apply_price_audit(by_route, ledger)[1].status == "pass"
    audited, audit = apply_price_audit(wrong_date, ledger)
    assert audited.package_options[0].draft.flight.price is None
    assert audit.issues[0].service == "flight"


def test_excursion_items_and_total_are_audited():
    ledger = PriceEvidenceLedger(
        excursions=[
            ExcursionEvidence(id="ex-1", name="Desert safari", adult_price=60, child_price=45, currency="USD"),
            ExcursionEvidence(id="ex-2", name="Dhow cruise", adult_price=40, currency="USD"),
        ]
    )
    reply = _reply(
        excursion=ExcursionDraft(
            label="Two tours",
            price=100,
            currency="USD",
            items=[
                ExcursionItem(id="ex-1", price=60, currency="USD"),
                ExcursionItem(id="ex-2", price=40, currency="USD"),
            ],
        )
    )

    audited, audit = apply_price_audit(reply, ledger)

    assert audit.status == "pass"
    assert audited.package_options[0].draft.excursion.price == 100


def test_excursion_total_disagreeing_with_items_is_removed():
    ledger = PriceEvidenceLedger(excursions=[ExcursionEvidence(id="ex-1", adult_price=60, currency="USD")])
    reply = _reply(
        excursion=ExcursionDraft(
            label="Safari",
            price=150,
            currency="USD",
            items=[ExcursionItem(id="ex-1", price=60, currency="USD")],
        )
    )

    audited, audit = apply_price_audit(reply, ledger)

    excursion = audited.package_options[0].draft.excursion
    assert excursion.items[0].price == 60
    assert excursion.price is None
    assert [issue.reason for issue in audit.issues] == ["unverified_excursion_total_price_removed"]


def test_unverified_excursion_items_take_the_total_with_them():
    reply = _reply(
        excursion=ExcursionDraft(
            label="Safari",
            price=60,
            currency="USD",
            items=[ExcursionItem(id="ex-404", name="Safari", price=60, currency="USD")],
        )
    )

    audited, audit = apply_price_audit(reply, PriceEvidenceLedger())

    excursion = audited.package_options[0].draft.excursion
    assert excursion.items[0].price is None
    assert excursion.items[0].name == "Safari"
    assert excursion.price is None
    assert [issue.reason for issue in audit.issues] == [
        "unverified_excursion_item_price_removed",
        "excursion_total_without_item_evidence_removed",
    ]


def test_insurance_matches_stated_criteria_before_first_quote():
    ledger = PriceEvidenceLedger(
        insurances=[
            InsuranceEvidence(total_premium=25, currency="EUR", start_date="2025-03-01", end_date="2025-03-05"),
            InsuranceEvidence(total_premium=40, currency="EUR", start_date="2025-04-01", end_date="2025-04-10"),
        ]
    )
    april = InsuranceDraft(plan_id="std", start_date="2025-04-01", end_date="2025-04-10", price=40, currency="EUR")
    undated = InsuranceDraft(plan_id="std", price=25, currency="EUR")

    assert find_insurance_evidence(april, ledger).total_premium == 40
    assert find_insurance_evidence(undated, ledger).total_premium == 25
    assert apply_price_audit(_reply(insurance=april), ledger)[1].status == "pass"
    audited, audit = apply_price_audit(_reply(insurance=undated.model_copy(update={"price": 40})), ledger)
    assert audited.package_options[0].draft.insurance.price is None
    assert audit.issues[0].reason == "unverified_insurance_price_removed"


def test_approx_total_must_equal_verified_prices():
    ledger = _hotel_ledger()
    ledger.transfers.append(TransferEvidence(id="tr-1", one_way=50, currency="USD"))
    services = {
        "hotel": HotelDraft(hotel_code="H1", price=1000, currency="USD"),
        "transfer": TransferDraft(selection_id="tr-1", price=50, currency="USD"),
    }

    matching, matching_audit = apply_price_audit(
        _reply(approx_total=ApproxTotal(amount=1050, currency="USD"), **services), ledger
    )
    inflated, inflated_audit = apply_price_audit(
        _reply(approx_total=ApproxTotal(amount=2000, currency="USD", note="rough"), **services), ledger
    )

    assert matching_audit.status == "pass"
    assert matching.package_options[0].approx_total.amount == 1050
    total = inflated.package_options[0].approx_total
    assert total.amount is None
    assert total.currency == "USD"
    assert total.note == "rough"
    assert inflated_audit.issues[0].service == "total"
    assert inflated_audit.issues[0].reason == "approx_total_removed_mismatch_with_verified_prices"


def test_approx_total_without_verified_prices_is_removed():
    reply = _reply(
        approx_total=ApproxTotal(amount=1000, currency="USD"),
        hotel=HotelDraft(hotel_code="H1", price=1000, currency="USD"),
    )

    audited, audit = apply_price_audit(reply, PriceEvidenceLedger())

    assert audited.package_options[0].approx_total.amount is None
    assert [issue.reason for issue in audit.issues] == [
        "unverified_hotel_price_removed",
        "approx_total_without_verified_prices_removed",
    ]


def test_audit_is_idempotent():
    reply = _reply(
        approx_total=ApproxTotal(amount=2000, currency="USD"),
        hotel=HotelDraft(hotel_code="H1", price=1000, currency="USD"),
        flight=FlightDraft(label="FZ 717", price=320, currency="USD"),
    )
    ledger = _hotel_ledger()

    once, first_audit = apply_price_audit(reply, ledger)
    twice, second_audit = apply_price_audit(once, ledger)

    assert first_audit.status == "fail"
    assert second_audit.status == "pass"
    assert second_audit.issues == []
    assert twice == once


def test_reply_without_options_passes():
    audited, audit = apply_price_audit(AssistantReply(message="Where to?"), PriceEvidenceLedger())

    assert audited.package_options == []
    assert audit.status == "pass"


def test_verified_cost_breakdown_totals_per_currency():
    breakdown = VerifiedCostBreakdown()
    breakdown.add("hotel", 1000, "USD")
    breakdown.add("excursion", 60, "USD")
    breakdown.add("insurance", 25, "EUR")

    assert breakdown.total("USD") == 1060
    assert breakdown.total("GBP") == 0
    assert breakdown.summary()["EUR"]["total"] == 25
    assert breakdown.summary()["USD"]["hotel"] == 1000


def test_audit_warning_reports_verified_totals(caplog):
    reply = _reply(
        hotel=HotelDraft(hotel_code="H1", price=1000, currency="USD"),
        transfer=TransferDraft(selection_id="tr-9", price=50, currency="USD"),
    )

    with caplog.at_level("WARNING", logger="concierge.utils.price_audit"):
        apply_price_audit(reply, _hotel_ledger())

    record = next(record for record in caplog.records if record.message.startswith("[Audit]"))
    assert record.num_issues == 1
    assert record.verified_totals["opt-1"]["USD"]["hotel"] == 1000
    assert record.verified_totals["opt-1"]["USD"]["transfer"] == 0
    assert record.verified_totals["opt-1"]["USD"]["total"] == 1000
