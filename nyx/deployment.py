"""
deployment.py - Loan Contract Deployment

A loan contract only works once it controls its metadata store and owns
its verification registry. Those handovers are a one-time ordering
dependency, so deployment is an explicit three-step sequence:

    construct()         deployer creates store, registry and an inactive contract
    transfer_control()  deployer hands store control and registry ownership over
    activate()          contract verifies it holds both and starts accepting calls

LoanFactory wraps the sequence to deploy one contract per loan.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional

from .core import (
    Address, DeploymentError,
    derive_address, normalize_address,
)
from .events import ContractCreated, EventLog
from .ledger import Ledger
from .loan import LoanContract, LoanParameters
from .metadata import MetadataStore
from .pricing_source import CarbonCreditPriceOracle
from .settlement import SettlementAsset
from .verification import VerificationRegistry


@dataclass(frozen=True, slots=True)
class LoanDeployment:
    """Everything a deployment produced."""
    contract: LoanContract
    loan_data: MetadataStore
    registry: VerificationRegistry
    events: EventLog

    @property
    def address(self) -> Address:
        return self.contract.address


class LoanDeploymentBuilder:
    """
    Step-by-step deployment of one LoanContract.

    Example:
        builder = LoanDeploymentBuilder(ledger, owner, NativeTransfer())
        builder.construct()
        builder.transfer_control()
        deployment = builder.activate()

        # or in one go
        deployment = LoanDeploymentBuilder(ledger, owner, NativeTransfer()).build()
    """

    def __init__(
        self,
        ledger: Ledger,
        owner: str,
        settlement: SettlementAsset,
        name: str = "LoanContract",
        nonce: int = 0,
        price_oracle: Optional[CarbonCreditPriceOracle] = None,
        event_log: Optional[EventLog] = None,
        deployer: Optional[str] = None,
    ):
        self.ledger = ledger
        self.owner: Address = normalize_address(owner)
        self.deployer: Address = normalize_address(deployer) if deployer else self.owner
        self.settlement = settlement
        self.name = name
        self.nonce = nonce
        self.price_oracle = price_oracle
        self.events = event_log if event_log is not None else EventLog()
        self._deployment: Optional[LoanDeployment] = None
        self._control_transferred = False
        self._activated = False

    @property
    def contract_address(self) -> Address:
        return derive_address(f"{self.deployer}:{self.name}", self.nonce)

    def construct(self) -> LoanContract:
        """
        Create the metadata store, verification registry and loan contract.

        The store and registry start under the deployer's control; the
        contract is inactive.

        Raises:
            DeploymentError: If called twice
        """
        if self._deployment is not None:
            raise DeploymentError(f"{self.name} already constructed")
        loan_data = MetadataStore(f"{self.name}TxData", self.owner)
        registry = VerificationRegistry(
            self.ledger, self.owner,
            name=f"{self.name}RWAVerification",
            event_log=self.events,
            address=derive_address(f"{self.deployer}:{self.name}", self.nonce + 1),
        )
        contract = LoanContract(
            self.ledger, self.owner, self.settlement, loan_data, registry,
            price_oracle=self.price_oracle,
            event_log=self.events,
            address=self.contract_address,
            name=self.name,
        )
        self._deployment = LoanDeployment(contract, loan_data, registry, self.events)
        return contract

    def transfer_control(self) -> None:
        """
        Hand store control and registry ownership to the contract.

        Raises:
            DeploymentError: If construct() has not run or control was already handed over
        """
        if self._deployment is None:
            raise DeploymentError(f"{self.name}: construct() must run before transfer_control()")
        if self._control_transferred:
            raise DeploymentError(f"{self.name}: control already transferred")
        contract = self._deployment.contract
        self._deployment.loan_data.transfer_control(self.owner, contract.address)
        self._deployment.registry.transfer_ownership(self.owner, contract.address)
        self._control_transferred = True

    def activate(self) -> LoanDeployment:
        """
        Activate the contract and return the finished deployment.

        Raises:
            DeploymentError: If control has not been transferred or already activated
        """
        if self._deployment is None or not self._control_transferred:
            raise DeploymentError(f"{self.name}: transfer_control() must run before activate()")
        if self._activated:
            raise DeploymentError(f"{self.name} already activated")
        self._deployment.contract.activate()
        self._activated = True
        if self.ledger.verbose:
            print(f"📝 Deployed: {self.name} @ {self._deployment.address} [{self.settlement!r}]")
        return self._deployment

    def build(self) -> LoanDeployment:
        """Run construct, transfer_control and activate in order."""
        self.construct()
        self.transfer_control()
        return self.activate()


class LoanFactory:
    """
    Deploys one loan contract per loan.

    Any caller may create a loan; the caller becomes the deployed contract's
    owner and fee recipient.
    """

    def __init__(
        self,
        ledger: Ledger,
        owner: str,
        settlement: SettlementAsset,
        event_log: Optional[EventLog] = None,
        address: Optional[str] = None,
    ):
        self.ledger = ledger
        self.owner: Address = normalize_address(owner)
        self.settlement = settlement
        self.address: Address = normalize_address(address) if address else derive_address(self.owner, 0)
        self.events = event_log if event_log is not None else EventLog()
        self._deployed: List[Address] = []
        self._contracts: Dict[Address, LoanDeployment] = {}

    def create_loan(self, caller: str, params: LoanParameters) -> Address:
        """
        Deploy a fresh contract owned by caller and create the loan on it.

        Returns:
            Address of the new loan contract
        """
        creator = normalize_address(caller)
        index = len(self._deployed)
        deployment = LoanDeploymentBuilder(
            self.ledger, creator, self.settlement,
            name=f"Loan{index}",
            # two addresses per deployment: contract, then registry
            nonce=2 * index,
            event_log=self.events,
            deployer=self.address,
        ).build()
        deployment.contract.create_loan(creator, params)

        self._deployed.append(deployment.address)
        self._contracts[deployment.address] = deployment
        self.events.emit(self.address, self.ledger.current_time, ContractCreated(deployment.address))
        return deployment.address

    def get_deployed_loans(self) -> List[Address]:
        return list(self._deployed)

    def get_contract(self, address: str) -> LoanContract:
        target = normalize_address(address)
        if target not in self._contracts:
            raise KeyError(f"No loan contract deployed at {address}")
        return self._contracts[target].contract

    def __repr__(self) -> str:
        return f"LoanFactory({self.address}, {len(self._deployed)} loans)"
