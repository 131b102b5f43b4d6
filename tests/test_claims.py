"""Insurance claim and ortho benefit calculators"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from conftest import CLINIC_ID, NOW

from ortho_billing.domain.insurance.claims import (
    ORTHO_CDT_CODES,
    calculate_claim_aging,
    calculate_claim_totals,
    calculate_estimated_insurance_payment,
    check_ortho_benefit_availability,
    days_until_appeal_deadline,
    format_payer_id,
    generate_claim_number,
    get_claim_aging_bucket,
    summarize_claims,
    update_insurance_benefit_usage,
    validate_cdt_code,
)
from ortho_billing.domain.insurance.schemas import ClaimItem, OrthoCoverage
from ortho_billing.models import InsuranceClaim, PatientInsurance


def coverage(**overrides):
    data = {
        "has_ortho_benefit": True,
        "ortho_lifetime_max": Decimal("2500.00"),
        "ortho_used_amount": Decimal("1000.00"),
        "ortho_remaining_amount": Decimal("1500.00"),
        "ortho_coverage_percent": Decimal("50"),
        "ortho_deductible": Decimal("100.00"),
        "ortho_deductible_met": Decimal("50.00"),
        "effective_date": date(2023, 1, 1),
    }
    data.update(overrides)
    return OrthoCoverage(**data)


# ============================================================================
# CLAIMS
# ============================================================================


class TestClaimNumbers:
    def test_first_claim_of_the_year(self, db):
        assert generate_claim_number(db, CLINIC_ID, NOW) == "CLM-2024-00001"

    def test_next_after_highest_for_clinic(self, db):
        for clinic_id, number in [
            (CLINIC_ID, "CLM-2024-00011"),
            (CLINIC_ID, "CLM-2024-00012"),
            (CLINIC_ID, "CLM-2023-00500"),
            ("clinic-2", "CLM-2024-00900"),
        ]:
            db.add(InsuranceClaim(clinic_id=clinic_id, claim_number=number, billed_amount=Decimal("10")))
        db.commit()

        assert generate_claim_number(db, CLINIC_ID, NOW) == "CLM-2024-00013"


def test_claim_totals_default_quantity_to_one():
    items = [
        ClaimItem(billed_amount=Decimal("150.00")),
        ClaimItem(billed_amount=Decimal("25.005"), quantity=2),
    ]

    totals = calculate_claim_totals(items)

    assert totals.total_billed == Decimal("200.01")
    assert totals.line_count == 2


def test_claim_totals_empty():
    totals = calculate_claim_totals([])
    assert totals.total_billed == Decimal("0.00")
    assert totals.line_count == 0


class TestClaimAging:
    def test_unfiled_claim(self):
        assert calculate_claim_aging(None, NOW) == 0
        assert get_claim_aging_bucket(None, NOW) == "0-30"

    def test_future_filing_never_negative(self):
        assert calculate_claim_aging(NOW + timedelta(days=3), NOW) == 0

    def test_whole_days(self):
        assert calculate_claim_aging(NOW - timedelta(days=45, hours=23), NOW) == 45

    def test_date_filing(self):
        assert calculate_claim_aging(date(2024, 6, 5), NOW) == 10

    @pytest.mark.parametrize(
        "days, bucket",
        [
            (30, "0-30"),
            (31, "31-60"),
            (60, "31-60"),
            (61, "61-90"),
            (90, "61-90"),
            (91, "91-120"),
            (120, "91-120"),
            (121, "120+"),
        ],
    )
    def test_buckets(self, days, bucket):
        assert get_claim_aging_bucket(NOW - timedelta(days=days), NOW) == bucket


class TestAppealDeadline:
    def test_no_deadline(self):
        assert days_until_appeal_deadline(None, NOW) is None

    def test_days_left(self):
        assert days_until_appeal_deadline(NOW + timedelta(days=10), NOW) == 10

    def test_passed_deadline_is_negative(self):
        assert days_until_appeal_deadline(NOW - timedelta(hours=1), NOW) == -1


@pytest.mark.parametrize(
    "code, valid",
    [("D8080", True), ("d8670", True), ("D808", False), ("8080", False), ("D80800", False), ("", False)],
)
def test_validate_cdt_code(code, valid):
    assert validate_cdt_code(code) is valid


def test_ortho_cdt_codes_are_valid():
    assert ORTHO_CDT_CODES["COMPREHENSIVE_ADOLESCENT"] == "D8080"
    assert all(validate_cdt_code(code) for code in ORTHO_CDT_CODES.values())


def test_format_payer_id():
    assert format_payer_id("ab-12 3c") == "AB123C"
    assert format_payer_id("60054") == "60054"


# ============================================================================
# ORTHO BENEFITS
# ============================================================================


class TestOrthoBenefitAvailability:
    def test_available(self):
        result = check_ortho_benefit_availability(coverage(), NOW)

        assert result.is_available is True
        assert result.remaining_benefit == Decimal("1500.00")
        assert result.reason is None

    def test_no_benefit(self):
        result = check_ortho_benefit_availability(coverage(has_ortho_benefit=False), NOW)

        assert result.is_available is False
        assert result.remaining_benefit == Decimal("0")
        assert result.reason == "No orthodontic benefit on this plan"

    def test_terminated(self):
        result = check_ortho_benefit_availability(
            coverage(termination_date=date(2024, 6, 14)), NOW
        )
        assert result.reason == "Coverage has terminated"

    def test_terminating_today_is_still_active(self):
        result = check_ortho_benefit_availability(
            coverage(termination_date=date(2024, 6, 15)), NOW
        )
        assert result.is_available is True

    def test_waiting_period(self):
        result = check_ortho_benefit_availability(
            coverage(effective_date=date(2024, 3, 1), ortho_waiting_period=6), NOW
        )

        assert result.is_available is False
        assert result.reason == "Waiting period until 2024-09-01"

    def test_waiting_period_over(self):
        result = check_ortho_benefit_availability(
            coverage(effective_date=date(2023, 3, 1), ortho_waiting_period=12), NOW
        )
        assert result.is_available is True

    def test_lifetime_maximum_met(self):
        result = check_ortho_benefit_availability(
            coverage(ortho_used_amount=Decimal("2600.00")), NOW
        )

        assert result.is_available is False
        assert result.remaining_benefit == Decimal("0")
        assert result.reason == "Lifetime maximum has been met"

    def test_accepts_patient_insurance_rows(self):
        insurance = PatientInsurance(
            has_ortho_benefit=True,
            ortho_lifetime_max=Decimal("3000.00"),
            ortho_used_amount=None,
            effective_date=date(2022, 1, 1),
        )

        result = check_ortho_benefit_availability(insurance, NOW)

        assert result.remaining_benefit == Decimal("3000.00")


class TestEstimatedInsurancePayment:
    def test_capped_at_remaining_benefit(self):
        estimate = calculate_estimated_insurance_payment(Decimal("5000.00"), coverage())

        assert estimate.estimated_payment == Decimal("1500.00")
        assert estimate.deductible_applied == Decimal("50.00")
        assert estimate.coverage_percent == Decimal("50")

    def test_deductible_then_coverage(self):
        estimate = calculate_estimated_insurance_payment(
            Decimal("1000.00"), coverage(ortho_coverage_percent=Decimal("80"))
        )

        # (1000 - 50) * 80%
        assert estimate.estimated_payment == Decimal("760.00")

    def test_unknown_remaining_benefit_is_uncapped(self):
        estimate = calculate_estimated_insurance_payment(
            Decimal("5000.00"), coverage(ortho_remaining_amount=None)
        )
        assert estimate.estimated_payment == Decimal("2475.00")

    def test_procedure_below_deductible(self):
        estimate = calculate_estimated_insurance_payment(Decimal("30.00"), coverage())

        assert estimate.estimated_payment == Decimal("0.00")
        assert estimate.deductible_applied == Decimal("30.00")

    def test_no_coverage_percent(self):
        estimate = calculate_estimated_insurance_payment(
            Decimal("500.00"), coverage(ortho_coverage_percent=None)
        )
        assert estimate.estimated_payment == Decimal("0.00")

    def test_rounds_half_up(self):
        estimate = calculate_estimated_insurance_payment(
            Decimal("100.01"),
            coverage(ortho_deductible=None, ortho_deductible_met=None, ortho_coverage_percent=Decimal("50")),
        )
        assert estimate.estimated_payment == Decimal("50.01")


class TestBenefitUsage:
    def add_insurance(self, db, used="500.00"):
        insurance = PatientInsurance(
            clinic_id=CLINIC_ID,
            patient_id="patient-1",
            has_ortho_benefit=True,
            ortho_lifetime_max=Decimal("2000.00"),
            ortho_used_amount=Decimal(used),
            ortho_remaining_amount=Decimal("2000.00") - Decimal(used),
            effective_date=date(2023, 1, 1),
        )
        db.add(insurance)
        db.commit()
        return insurance

    def test_usage_added_and_remaining_recomputed(self, db):
        insurance = self.add_insurance(db)

        updated = update_insurance_benefit_usage(db, insurance.id, Decimal("250.25"))

        assert updated.ortho_used_amount == Decimal("750.25")
        assert updated.ortho_remaining_amount == Decimal("1249.75")

    def test_remaining_never_negative(self, db):
        insurance = self.add_insurance(db, used="1900.00")

        updated = update_insurance_benefit_usage(db, insurance.id, Decimal("300.00"))

        assert updated.ortho_used_amount == Decimal("2200.00")
        assert updated.ortho_remaining_amount == Decimal("0.00")

    def test_unknown_insurance(self, db):
        assert update_insurance_benefit_usage(db, "missing", Decimal("10")) is None


# ============================================================================
# REPORTING
# ============================================================================


def claim(status, billed, paid=None, filed_days_ago=None, processed_days_ago=0, **amounts):
    return InsuranceClaim(
        clinic_id=CLINIC_ID,
        claim_number="CLM-2024-00001",
        status=status,
        billed_amount=Decimal(billed),
        paid_amount=Decimal(paid) if paid else None,
        adjustment_amount=amounts.get("adjustment"),
        patient_responsibility=amounts.get("patient"),
        filing_date=NOW - timedelta(days=filed_days_ago) if filed_days_ago is not None else None,
        updated_at=NOW - timedelta(days=processed_days_ago),
    )


class TestSummarizeClaims:
    def test_summary(self):
        claims = [
            claim(
                "PAID",
                "1000.00",
                paid="800.00",
                filed_days_ago=30,
                processed_days_ago=10,
                adjustment=Decimal("100.00"),
                patient=Decimal("100.00"),
            ),
            claim("DENIED", "500.00", filed_days_ago=20, processed_days_ago=5),
            claim("SUBMITTED", "250.55", filed_days_ago=3),
            claim("PARTIAL", "300.00", paid="150.00"),
        ]

        summary = summarize_claims(claims)

        assert summary.total_claims == 4
        assert summary.total_billed == Decimal("2050.55")
        assert summary.total_paid == Decimal("950.00")
        assert summary.total_adjusted == Decimal("100.00")
        assert summary.total_patient_responsibility == Decimal("100.00")
        assert summary.by_status["PAID"].count == 1
        assert summary.by_status["PAID"].amount == Decimal("1000.00")
        assert summary.by_status["SUBMITTED"].amount == Decimal("250.55")
        # (20 + 15) / 2, rounded half up; the unfiled PARTIAL claim is not counted
        assert summary.average_processing_days == 18
        assert summary.denial_rate == 25.0

    def test_denial_rate_one_decimal(self):
        claims = [claim("DENIED", "10"), claim("PAID", "10"), claim("PAID", "10")]

        assert summarize_claims(claims).denial_rate == 33.3

    def test_empty(self):
        summary = summarize_claims([])

        assert summary.total_claims == 0
        assert summary.denial_rate == 0.0
        assert summary.average_processing_days == 0
        assert summary.by_status == {}
