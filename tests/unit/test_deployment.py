"""
test_deployment.py - Unit tests for deployment and the loan factory

Tests:
- construct -> transfer_control -> activate ordering
- Inactive contracts refuse mutating calls
- Activation requires store control and registry ownership
- LoanFactory: one contract per loan, ContractCreated events
"""

import pytest
from decimal import Decimal

from nyx import (
    LoanDeploymentBuilder, LoanFactory, LoanContract, LoanState,
    MetadataStore, VerificationRegistry, NativeTransfer, TokenTransfer,
    ContractCreated, DeploymentError, ContractNotActive, Unauthorized,
    to_wei,
)


class TestBuilder:
    """Tests for LoanDeploymentBuilder."""

    def test_build_activates(self, ledger, owner):
        deployment = LoanDeploymentBuilder(ledger, owner, NativeTransfer()).build()
        assert deployment.contract.active
        assert deployment.loan_data.controller == deployment.address
        assert deployment.registry.owner == deployment.address
        assert "LYX" in ledger.list_units()

    def test_out_of_order(self, ledger, owner):
        builder = LoanDeploymentBuilder(ledger, owner, NativeTransfer())
        with pytest.raises(DeploymentError):
            builder.transfer_control()
        with pytest.raises(DeploymentError):
            builder.activate()
        builder.construct()
        with pytest.raises(DeploymentError):
            builder.activate()
        with pytest.raises(DeploymentError):
            builder.construct()
        builder.transfer_control()
        with pytest.raises(DeploymentError):
            builder.transfer_control()
        builder.activate()
        with pytest.raises(DeploymentError):
            builder.activate()

    def test_inactive_contract_refuses_calls(self, ledger, owner, make_params):
        builder = LoanDeploymentBuilder(ledger, owner, NativeTransfer())
        contract = builder.construct()
        with pytest.raises(ContractNotActive):
            contract.create_loan(owner, make_params())
        builder.transfer_control()
        with pytest.raises(ContractNotActive):
            contract.set_carbon_credit_price(owner, Decimal("1"))

    def test_activate_without_control(self, ledger, owner):
        store = MetadataStore("data", owner)
        registry = VerificationRegistry(ledger, owner)
        contract = LoanContract(ledger, owner, NativeTransfer(), store, registry)
        with pytest.raises(DeploymentError):
            contract.activate()
        store.transfer_control(owner, contract.address)
        with pytest.raises(DeploymentError):
            contract.activate()
        registry.transfer_ownership(owner, contract.address)
        contract.activate()
        assert contract.active

    def test_two_settlement_assets_share_a_ledger(self, ledger, deployment, token_deployment):
        assert deployment.address != token_deployment.address
        assert ledger.list_units() == ["LYX", "NYX"]


class TestFactory:
    """Tests for LoanFactory."""

    def test_create_loan_deploys_contract(self, ledger, owner, lender, make_params):
        factory = LoanFactory(ledger, owner, NativeTransfer())
        address = factory.create_loan(owner, make_params())
        assert factory.get_deployed_loans() == [address]
        contract = factory.get_contract(address)
        assert contract.owner == owner
        assert contract.lender_of(1) == lender
        assert contract.initial_loan_amount(1) == to_wei(1000)
        assert contract.loan_state(1) == LoanState.CREATED
        assert contract.get_terms(1).amortization_period_in_months == 36

    def test_contract_created_events(self, ledger, owner, lender, borrower, make_params):
        factory = LoanFactory(ledger, owner, NativeTransfer())
        first = factory.create_loan(owner, make_params())
        second = factory.create_loan(lender, make_params(lender=borrower))
        assert first != second
        assert factory.events.of_type(ContractCreated) == [ContractCreated(first), ContractCreated(second)]
        assert len(factory.get_deployed_loans()) == 2
        assert factory.get_contract(second).owner == lender

    def test_unknown_contract(self, ledger, owner):
        factory = LoanFactory(ledger, owner, TokenTransfer())
        with pytest.raises(KeyError):
            factory.get_contract(owner)

    def test_factory_loan_is_usable(self, ledger, owner, lender, borrower, make_params):
        factory = LoanFactory(ledger, owner, NativeTransfer())
        contract = factory.get_contract(factory.create_loan(owner, make_params()))
        ledger.issue(lender, "LYX", Decimal("1000"))
        contract.fund_loan(lender, 1, value=to_wei(1000))
        contract.accept_loan(borrower, 1)
        assert contract.balance(borrower) == Decimal("1000")

    def test_only_contract_owner_creates_on_deployed_contract(self, ledger, owner, stranger, make_params):
        factory = LoanFactory(ledger, owner, NativeTransfer())
        contract = factory.get_contract(factory.create_loan(owner, make_params()))
        with pytest.raises(Unauthorized):
            contract.create_loan(stranger, make_params())
