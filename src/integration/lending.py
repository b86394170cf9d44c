"""
Collateralized lending (v1) transaction builders.

Every lending transaction spends the lending covenant at io#0 and the price
oracle at io#1. The covenant's commitment is replaced by the VM number of the
oracle data sequence it was used with, and its token amount moves by
``-difference`` (positive when minting, negative when principal comes back).
The oracle output keeps its state and collects the use fee.

What follows io#1 depends on the covenant script:

- borrow: loan output, borrowed tokens, native change, then either the baton
  minter and the freshly minted loan agent or two token change slots.
- refinance: the old loan and its agent are spent; new loan, agent, interest
  and two change slots.
- repay / liquidate / redeem: the loan is spent and interest is paid to the
  interest covenant. Repay needs the loan agent, liquidate needs the loan to
  be under the liquidation threshold, redeem pays the borrower's leftover
  collateral to a pay-to-nft-hash output.
- update: a single native coin refreshes the covenant's oracle sequence.

Covenant scripts check outputs by position, so every builder describes its
outputs as constraints (see ``constraints.py``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from ..codec.loan import (
    LoanCommitment,
    decode_loan_commitment_v0,
    decode_loan_commitment_v1,
    encode_loan_commitment_v1,
)
from ..codec.nft import output_nft_hash
from ..codec.oracle import (
    DelphiCommitment,
    decode_bporacle_commitment,
    decode_delphi_commitment,
    decode_price_message,
    encode_delphi_commitment,
)
from ..core.accrual import (
    accrue_interest,
    is_liquidatable,
    redeemable_native_amount,
    validate_loan_sanity,
)
from ..core.errors import InvalidInput, InvalidProgramState
from ..state.types import (
    NFT,
    UTXO,
    Burn,
    ChangePayoutRule,
    FixedTokenAmount,
    Keep,
    NFTCapability,
    Output,
    P2PKHCoin,
    PayoutRule,
    TokenComponent,
    TxResult,
)
from ..state.wire import OP_RETURN_SCRIPT, decode_uint_le, encode_vm_number
from .compiler import InputTemplate, ScriptCompiler
from .config import LendingParams, NetworkParams, TxContext, load_lending_params, load_network_params
from .constraints import (
    ConstrainedTx,
    FixedAmount,
    OutputConstraint,
    Predefined,
    VariableAmount,
    generate_tx_with_constraints_and_payout_rules,
)
from .keys import pubkey_hash_from_private_key

log = logging.getLogger(__name__)

# Script ids understood by the compiler collaborator.
LOAN_LOCK = "moria:loan"
LOAN_REPAY = "moria:loan_repay"
LOAN_REDEEM = "moria:loan_redeem"
LOAN_REFINANCE = "moria:loan_refinance"
LOAN_ADD_COLLATERAL = "moria:loan_add_collateral"
DELPHI_USE = "delphi:use"
DELPHI_UPDATE = "delphi:update"
DELPHI_GP_UPDATER_UPDATE = "delphi_gp_updater:update"
BPORACLE_USE = "bporacle:use"
BATONMINTER_MINT = "batonminter:mint"
P2NFTH_LOCK = "p2nfth:lock"
P2NFTH_UNLOCK = "p2nfth:unlock"


@unique
class CovenantScript(str, Enum):
    BORROW = "moria_borrow"
    REFINANCE = "moria_refinance_loan"
    REPAY = "moria_repay_loan"
    UPDATE = "moria_update"

    @property
    def script_id(self) -> str:
        return f"moria:{self.value}"


@dataclass(frozen=True)
class LendingContext:
    params: LendingParams
    tx: TxContext
    compiler: ScriptCompiler
    interest_locking_bytecode: bytes

    def p2nfth_locking_bytecode(self, nfthash: bytes) -> bytes:
        return self.compiler.generate_bytecode(P2NFTH_LOCK, {"nfthash": bytes(nfthash)})


def create_lending_context(
    compiler: ScriptCompiler,
    params: Optional[LendingParams] = None,
    network: Optional[NetworkParams] = None,
    **hooks,
) -> LendingContext:
    """Bind protocol parameters (defaults from the bundled yaml) to a compiler."""
    params = params or load_lending_params()
    network = network or load_network_params()
    interest_locking_bytecode = compiler.generate_bytecode(P2NFTH_LOCK, {"nfthash": params.interest_nfthash})
    return LendingContext(params, TxContext.from_network(network, **hooks), compiler, interest_locking_bytecode)


@dataclass(frozen=True)
class LoanTerms:
    loan_amount: int
    collateral_amount: int
    annual_interest_bp: int


@dataclass(frozen=True)
class LoanAgentSpec:
    """
    How the loan agent nft shows up in a lending transaction.

    ``coin`` is an agent being spent. ``output_locking_bytecode`` keeps (or
    mints) the agent at that destination; leave it unset to burn a spent
    agent. ``nfthash`` links a new loan to an agent that stays where it is.
    """

    coin: Optional[P2PKHCoin] = None
    output_locking_bytecode: Optional[bytes] = None
    output_amount: Optional[int] = None
    output_token_amount: Optional[int] = None
    batonminter_utxo: Optional[UTXO] = None
    batonminter_nft_capability: Optional[NFTCapability] = None
    nfthash: Optional[bytes] = None


@dataclass(frozen=True)
class LendingModifiers:
    script: CovenantScript
    difference: int
    input_loan_utxo: Optional[UTXO] = None
    collateral_amount: Optional[int] = None
    annual_interest_bp: Optional[int] = None
    loan_agent: Optional[LoanAgentSpec] = None
    bporacle_utxo: Optional[UTXO] = None


@dataclass(frozen=True)
class LendingFees:
    batonminter_mint_fee: int = 0
    bporacle_use_fee: int = 0
    delphi_use_fee: int = 0

    @property
    def total(self) -> int:
        return self.batonminter_mint_fee + self.bporacle_use_fee + self.delphi_use_fee


@dataclass(frozen=True)
class LendingTxResult(TxResult):
    fees: LendingFees = field(default_factory=LendingFees)
    moria_utxo: Optional[UTXO] = None
    delphi_utxo: Optional[UTXO] = None
    loan_utxo: Optional[UTXO] = None
    interest_utxo: Optional[UTXO] = None
    loan_agent_utxo: Optional[UTXO] = None
    bporacle_utxo: Optional[UTXO] = None
    batonminter_utxo: Optional[UTXO] = None
    borrower_p2nfth_utxo: Optional[UTXO] = None
    delphi_gp_updater_utxo: Optional[UTXO] = None
    nft_utxos: Tuple[UTXO, ...] = ()


@dataclass(frozen=True)
class P2NFTHWithdrawEntry:
    """A pay-to-nft-hash coin; ``subentries`` are locked to this coin's own nft."""

    utxo: UTXO
    subentries: Tuple["P2NFTHWithdrawEntry", ...] = ()


NFTOutputDecision = Union[Keep, Burn]


def _require_nft(utxo: UTXO, name: str) -> NFT:
    nft = utxo.output.nft
    if nft is None:
        raise InvalidInput(f"{name} is expected to hold an nft")
    return nft


def _require_no_nft_funding(coins: Sequence[P2PKHCoin]) -> None:
    for coin in coins:
        if coin.output.nft is not None:
            raise InvalidInput(
                "funding coins must not hold nfts",
                {"txhash": coin.outpoint.txhash.hex(), "index": coin.outpoint.index},
            )


def _require_native_or_token(coins: Sequence[P2PKHCoin], token_id: str) -> None:
    for coin in coins:
        token = coin.output.token
        if token is not None and (token.token_id != token_id or token.nft is not None):
            raise InvalidInput("funding coins may only hold native coins or fungible loan tokens")


def _delphi_state(delphi_utxo: UTXO) -> DelphiCommitment:
    delphi = decode_delphi_commitment(_require_nft(delphi_utxo, "delphi_utxo").commitment)
    if delphi.price <= 0:
        raise InvalidInput("oracle price should be greater than zero")
    return delphi


def _interest_due(params: LendingParams, loan: LoanCommitment, now_ts: int) -> int:
    # An interest output cannot carry zero tokens.
    owed = accrue_interest(params.interest_mode, loan.principal, loan.annual_interest_bp, now_ts, loan.timestamp)
    return max(owed, 1)


def _with_min_amount(ctx: LendingContext, output: Output, amount: Optional[int] = None) -> Output:
    if amount is not None:
        return output.with_amount(amount)
    return output.with_amount(ctx.tx.get_output_min_amount(output))


class _LendingTx:
    """Collects inputs, output slots and the protocol outputs to locate afterwards."""

    def __init__(self, ctx: LendingContext) -> None:
        self.ctx = ctx
        self.inputs: List[InputTemplate] = []
        self.constraints: List[OutputConstraint] = []
        self.named: Dict[str, Output] = {}
        self.fees: Dict[str, int] = {}

    def spend(self, utxo: UTXO, script_id: str, data: Optional[dict] = None) -> None:
        self.inputs.append(InputTemplate.from_script(utxo, script_id, data))

    def spend_coin(self, coin: P2PKHCoin) -> None:
        self.inputs.append(InputTemplate.from_coin(coin))

    def put(self, output: Output, name: Optional[str] = None) -> Output:
        self.constraints.append(Predefined(output))
        if name is not None:
            self.named[name] = output
        return output

    def slot(self, constraint: OutputConstraint) -> None:
        self.constraints.append(constraint)

    def build(self, rules: Sequence[PayoutRule], strict: bool) -> ConstrainedTx:
        return generate_tx_with_constraints_and_payout_rules(
            self.ctx.tx, self.ctx.compiler, self.inputs, self.constraints, rules, strict
        )

    def locate(self, tx: ConstrainedTx) -> Dict[str, UTXO]:
        located: Dict[str, UTXO] = {}
        for name, output in self.named.items():
            index = tx.index_of(output)
            if index == -1:
                raise InvalidProgramState(f"{name} output index not found")
            located[name] = tx.utxo_at(index)
        return located


def _interest_output(ctx: LendingContext, amount: int) -> Output:
    token = TokenComponent(ctx.params.moria_token_id, amount)
    return _with_min_amount(ctx, Output(ctx.interest_locking_bytecode, 0, token))


def _agent_output(ctx: LendingContext, spec: LoanAgentSpec, token_id: str, nft: NFT) -> Output:
    token_amount = spec.output_token_amount if spec.output_token_amount is not None else 0
    output = Output(spec.output_locking_bytecode, 0, TokenComponent(token_id, token_amount, nft))
    return _with_min_amount(ctx, output, spec.output_amount)


def _repay_io(b: _LendingTx, m: LendingModifiers, delphi: DelphiCommitment, funding: Sequence[P2PKHCoin]) -> None:
    params = b.ctx.params
    loan_utxo = m.input_loan_utxo
    if loan_utxo is None:
        raise InvalidInput("input_loan_utxo is required")
    _require_native_or_token(funding, params.moria_token_id)
    loan = decode_loan_commitment_v1(_require_nft(loan_utxo, "input_loan_utxo").commitment)
    interest = _interest_due(params, loan, delphi.timestamp)
    total_owed = loan.principal + interest
    if -m.difference != loan.principal:
        raise InvalidInput("the covenant must take back exactly the loan principal")
    redeem = m.bporacle_utxo is not None
    agent = m.loan_agent
    if redeem and agent is not None:
        raise InvalidInput("give either bporacle_utxo or loan_agent, not both")

    b.spend(loan_utxo, LOAN_REDEEM if redeem else LOAN_REPAY)
    b.put(_interest_output(b.ctx, interest), "interest_utxo")

    if agent is not None:
        if agent.coin is None:
            raise InvalidInput("loan_agent.coin is required to repay")
        b.spend_coin(agent.coin)
    elif redeem:
        bporacle_nft = _require_nft(m.bporacle_utxo, "bporacle_utxo")
        b.spend(m.bporacle_utxo, BPORACLE_USE)
        use_fee = decode_bporacle_commitment(bporacle_nft.commitment).use_fee
        b.fees["bporacle_use_fee"] = use_fee
        b.put(m.bporacle_utxo.output.with_amount(m.bporacle_utxo.output.amount + use_fee), "bporacle_utxo")
        redeemable = redeemable_native_amount(total_owed, delphi.price)
        borrower_amount = loan_utxo.output.amount - redeemable
        if borrower_amount < 0:
            raise InvalidInput(
                "loan collateral does not cover the redeemable amount",
                {"collateral": loan_utxo.output.amount, "redeemable": redeemable},
            )
        lock = b.ctx.p2nfth_locking_bytecode(loan.loan_agent_nfthash)
        b.put(Output(lock, borrower_amount), "borrower_p2nfth_utxo")
        b.slot(VariableAmount(can_contain_token=True, allows_opreturn=False, allowed_tokens=(params.moria_token_id,)))
        return
    elif not is_liquidatable(loan_utxo.output.amount, delphi.price, total_owed, params.liquidation_ratio):
        raise InvalidInput(
            "cannot liquidate a loan above the liquidation threshold",
            {"collateral": loan_utxo.output.amount, "price": delphi.price, "total_owed": total_owed},
        )

    if agent is not None and agent.output_locking_bytecode is not None:
        coin_token = agent.coin.output.token
        b.put(_agent_output(b.ctx, agent, coin_token.token_id, coin_token.nft), "loan_agent_utxo")
    else:
        b.put(Output(OP_RETURN_SCRIPT, 0))
    b.slot(VariableAmount(can_contain_token=False, allows_opreturn=True))
    b.slot(VariableAmount(can_contain_token=True, allows_opreturn=True, allowed_tokens=(params.moria_token_id,)))


def _update_io(b: _LendingTx, initial: Optional[P2PKHCoin], others: List[P2PKHCoin]) -> None:
    if initial is None:
        raise InvalidInput("a native-only funding coin is required")
    if others:
        raise InvalidInput("a covenant update accepts exactly one native-only funding coin")
    b.spend_coin(initial)
    b.slot(VariableAmount(can_contain_token=False, allows_opreturn=True))


def _borrow_io(
    b: _LendingTx,
    m: LendingModifiers,
    delphi: DelphiCommitment,
    funding: Sequence[P2PKHCoin],
    initial: Optional[P2PKHCoin],
) -> bool:
    """Returns True when ``initial`` was already spent as the baton funding input."""
    params = b.ctx.params
    agent = m.loan_agent
    if m.collateral_amount is None or m.annual_interest_bp is None:
        raise InvalidInput("collateral_amount and annual_interest_bp are required")
    if agent is None:
        raise InvalidInput("loan_agent is required")
    if not params.mint_min_bp_rate <= m.annual_interest_bp <= params.mint_max_bp_rate:
        raise InvalidInput(
            f"annual_interest_bp must be within [{params.mint_min_bp_rate}, {params.mint_max_bp_rate}]",
            {"annual_interest_bp": m.annual_interest_bp},
        )

    initial_spent = False
    agent_nft_source: Optional[Tuple[str, bytes]] = None
    input_loan: Optional[LoanCommitment] = None
    if m.script == CovenantScript.BORROW:
        if m.difference <= 0:
            raise InvalidInput("a mint must issue a positive amount")
        if agent.nfthash is None:
            if initial is None:
                raise InvalidInput("a native-only funding coin is required")
            if any(c.output.token is not None for c in funding):
                raise InvalidInput("minting with the baton only accepts native-only funding coins")
            if agent.batonminter_utxo is None or agent.batonminter_nft_capability is None:
                raise InvalidInput("batonminter_utxo and batonminter_nft_capability are required")
            b.spend_coin(initial)
            initial_spent = True
            baton_nft = _require_nft(agent.batonminter_utxo, "batonminter_utxo")
            agent_nft_source = (agent.batonminter_utxo.output.token.token_id, baton_nft.commitment)
        elif agent.batonminter_utxo is not None or agent.batonminter_nft_capability is not None:
            raise InvalidInput("loan_agent.nfthash is given, the baton minter must not be")
    else:
        if agent.nfthash is not None:
            raise InvalidInput("loan_agent.nfthash must not be given on refinance")
        if m.input_loan_utxo is None:
            raise InvalidInput("input_loan_utxo is required")
        if agent.coin is None:
            raise InvalidInput("loan_agent.coin is required to refinance")
        coin_nft = agent.coin.output.nft
        if coin_nft is None:
            raise InvalidInput("loan_agent.coin is expected to hold an nft")
        _require_native_or_token(funding, params.moria_token_id)
        input_loan = decode_loan_commitment_v1(_require_nft(m.input_loan_utxo, "input_loan_utxo").commitment)
        b.spend(m.input_loan_utxo, LOAN_REFINANCE)
        b.spend_coin(agent.coin)
        agent_nft_source = (agent.coin.output.token.token_id, coin_nft.commitment)

    agent_output: Optional[Output] = None
    if agent_nft_source is not None:
        if agent.output_locking_bytecode is None:
            raise InvalidInput("loan_agent.output_locking_bytecode is required")
        if agent.coin is not None:
            capability = agent.coin.output.nft.capability
        else:
            capability = agent.batonminter_nft_capability
        token_id, commitment = agent_nft_source
        agent_output = _agent_output(b.ctx, agent, token_id, NFT(capability, commitment))
        loan_agent_nfthash = output_nft_hash(agent_output)
    else:
        if agent.output_locking_bytecode is not None:
            raise InvalidInput("loan_agent.output_locking_bytecode must not be given with loan_agent.nfthash")
        loan_agent_nfthash = agent.nfthash

    principal = (input_loan.principal if input_loan is not None else 0) + m.difference
    if principal < params.mint_min_amount:
        raise InvalidInput(f"the loan should be at least {params.mint_min_amount} tokens, got {principal}")
    if principal > params.mint_max_amount:
        raise InvalidInput(f"the loan should not exceed {params.mint_max_amount} tokens, got {principal}")
    commitment = encode_loan_commitment_v1(
        LoanCommitment(
            principal=principal,
            annual_interest_bp=m.annual_interest_bp,
            timestamp=delphi.timestamp,
            loan_agent_nfthash=loan_agent_nfthash,
        )
    )
    loan_output = Output(
        b.ctx.compiler.generate_bytecode(LOAN_LOCK),
        m.collateral_amount,
        TokenComponent(params.moria_token_id, 0, NFT(NFTCapability.NONE, commitment)),
    )
    b.put(loan_output, "loan_utxo")

    if m.script == CovenantScript.BORROW:
        b.slot(
            FixedAmount(
                amount=params.borrowed_token_output_amount,
                token=FixedTokenAmount(params.moria_token_id, principal),
            )
        )
        b.slot(VariableAmount(can_contain_token=False, allows_opreturn=True))
        if agent_output is not None:
            baton = agent.batonminter_utxo
            b.spend(baton, BATONMINTER_MINT)
            b.fees["batonminter_mint_fee"] = params.batonminter_mint_fee
            next_commitment = encode_vm_number(decode_uint_le(baton.output.nft.commitment) + 1)
            baton_output = baton.output.with_commitment(next_commitment)
            b.put(baton_output.with_amount(baton.output.amount + params.batonminter_mint_fee), "batonminter_utxo")
            b.put(agent_output, "loan_agent_utxo")
        else:
            for _ in range(2):
                b.slot(
                    VariableAmount(
                        can_contain_token=True, allows_opreturn=True, disallowed_tokens=(params.moria_token_id,)
                    )
                )
    else:
        b.put(agent_output, "loan_agent_utxo")
        interest = _interest_due(params, input_loan, delphi.timestamp)
        b.put(_interest_output(b.ctx, interest), "interest_utxo")
        b.slot(VariableAmount(can_contain_token=True, allows_opreturn=True))
        b.slot(VariableAmount(can_contain_token=True, allows_opreturn=True))
    return initial_spent


def generate_lending_tx(
    ctx: LendingContext,
    moria_utxo: UTXO,
    modifiers: LendingModifiers,
    delphi_utxo: UTXO,
    funding_coins: Sequence[P2PKHCoin],
    rules: Sequence[PayoutRule],
) -> LendingTxResult:
    """
    Build and compile one lending covenant transaction.

    Raises:
        ValueError: on malformed commitments, out-of-range terms or unfillable outputs
        InsufficientFunds: when ``funding_coins`` cannot pay for it
    """
    moria_nft = _require_nft(moria_utxo, "moria_utxo")
    delphi = _delphi_state(delphi_utxo)
    b = _LendingTx(ctx)

    b.spend(moria_utxo, modifiers.script.script_id)
    moria_token = moria_utxo.output.token
    b.put(
        Output(
            moria_utxo.output.locking_bytecode,
            moria_utxo.output.amount,
            TokenComponent(
                moria_token.token_id,
                moria_token.amount - modifiers.difference,
                NFT(moria_nft.capability, encode_vm_number(delphi.data_sequence)),
            ),
        ),
        "moria_utxo",
    )
    b.spend(delphi_utxo, DELPHI_USE)
    b.fees["delphi_use_fee"] = delphi.use_fee
    b.put(delphi_utxo.output.with_amount(delphi_utxo.output.amount + delphi.use_fee), "delphi_utxo")

    _require_no_nft_funding(funding_coins)
    initial = next((c for c in funding_coins if c.output.token is None), None)
    others = [c for c in funding_coins if c is not initial]
    if modifiers.script == CovenantScript.REPAY:
        _repay_io(b, modifiers, delphi, funding_coins)
        spend_initial = True
    elif modifiers.script == CovenantScript.UPDATE:
        _update_io(b, initial, others)
        spend_initial = False
    else:
        spend_initial = not _borrow_io(b, modifiers, delphi, funding_coins, initial)
    # a native-only coin goes first among the trailing funding inputs
    if spend_initial and initial is not None:
        others.insert(0, initial)
    for coin in others:
        b.spend_coin(coin)

    tx = b.build(rules, strict=True)
    located = b.locate(tx)
    result = LendingTxResult(
        txbin=tx.compiled.txbin,
        txhash=tx.compiled.txhash,
        txfee=tx.txfee,
        payouts=tx.payout_utxos(),
        source_outputs=tx.source_outputs,
        outputs=tx.outputs,
        fees=LendingFees(**b.fees),
        **located,
    )
    log.debug(
        "%s tx %s: fee %d, protocol fees %d, %d bytes",
        modifiers.script.value, result.txhash.hex(), result.txfee, result.fees.total, len(result.txbin),
    )
    return result


def _validate_terms(ctx: LendingContext, delphi_utxo: UTXO, terms: LoanTerms) -> None:
    delphi = _delphi_state(delphi_utxo)
    validate_loan_sanity(terms.loan_amount, terms.collateral_amount, delphi.price, ctx.params.mint_ratio)


def _require(result: LendingTxResult, *names: str) -> LendingTxResult:
    missing = [n for n in names if getattr(result, n) is None]
    if missing:
        raise InvalidProgramState(f"lending tx is missing outputs: {', '.join(missing)}")
    return result


def mint_loan_with_baton_minter(
    ctx: LendingContext,
    moria_utxo: UTXO,
    delphi_utxo: UTXO,
    batonminter_utxo: UTXO,
    terms: LoanTerms,
    funding_coins: Sequence[P2PKHCoin],
    loan_agent_locking_bytecode: bytes,
    rules: Sequence[PayoutRule],
) -> LendingTxResult:
    """Mint a loan together with a new loan agent nft issued by the baton minter."""
    _validate_terms(ctx, delphi_utxo, terms)
    modifiers = LendingModifiers(
        script=CovenantScript.BORROW,
        difference=terms.loan_amount,
        collateral_amount=terms.collateral_amount,
        annual_interest_bp=terms.annual_interest_bp,
        loan_agent=LoanAgentSpec(
            output_locking_bytecode=loan_agent_locking_bytecode,
            batonminter_utxo=batonminter_utxo,
            batonminter_nft_capability=NFTCapability.NONE,
        ),
    )
    result = generate_lending_tx(ctx, moria_utxo, modifiers, delphi_utxo, funding_coins, rules)
    return _require(result, "loan_utxo", "batonminter_utxo", "loan_agent_utxo")


def mint_loan_with_existing_loan_agent(
    ctx: LendingContext,
    moria_utxo: UTXO,
    delphi_utxo: UTXO,
    terms: LoanTerms,
    funding_coins: Sequence[P2PKHCoin],
    loan_agent_nfthash: bytes,
    rules: Sequence[PayoutRule],
) -> LendingTxResult:
    """Mint a loan owned by an agent nft the borrower already holds (by its nft hash)."""
    _validate_terms(ctx, delphi_utxo, terms)
    if len(loan_agent_nfthash) != 32:
        raise InvalidInput("loan_agent_nfthash must be 32 bytes")
    modifiers = LendingModifiers(
        script=CovenantScript.BORROW,
        difference=terms.loan_amount,
        collateral_amount=terms.collateral_amount,
        annual_interest_bp=terms.annual_interest_bp,
        loan_agent=LoanAgentSpec(nfthash=bytes(loan_agent_nfthash)),
    )
    result = generate_lending_tx(ctx, moria_utxo, modifiers, delphi_utxo, funding_coins, rules)
    return _require(result, "loan_utxo")


def refinance_loan(
    ctx: LendingContext,
    moria_utxo: UTXO,
    delphi_utxo: UTXO,
    loan_utxo: UTXO,
    terms: LoanTerms,
    loan_agent_coin: P2PKHCoin,
    funding_coins: Sequence[P2PKHCoin],
    output_loan_agent_locking_bytecode: bytes,
    rules: Sequence[PayoutRule],
) -> LendingTxResult:
    """Replace a loan with new terms; the principal delta is minted or repaid in the same tx."""
    _validate_terms(ctx, delphi_utxo, terms)
    current = decode_loan_commitment_v1(_require_nft(loan_utxo, "loan_utxo").commitment)
    modifiers = LendingModifiers(
        script=CovenantScript.REFINANCE,
        difference=terms.loan_amount - current.principal,
        input_loan_utxo=loan_utxo,
        collateral_amount=terms.collateral_amount,
        annual_interest_bp=terms.annual_interest_bp,
        loan_agent=LoanAgentSpec(coin=loan_agent_coin, output_locking_bytecode=output_loan_agent_locking_bytecode),
    )
    result = generate_lending_tx(ctx, moria_utxo, modifiers, delphi_utxo, funding_coins, rules)
    return _require(result, "loan_utxo", "interest_utxo", "loan_agent_utxo")


def repay_loan(
    ctx: LendingContext,
    moria_utxo: UTXO,
    delphi_utxo: UTXO,
    loan_utxo: UTXO,
    loan_agent_coin: P2PKHCoin,
    funding_coins: Sequence[P2PKHCoin],
    output_loan_agent: Union[bytes, Burn],
    rules: Sequence[PayoutRule],
) -> LendingTxResult:
    """
    Pay back principal plus interest and release the collateral.

    ``output_loan_agent`` is the locking bytecode that keeps the loan agent
    nft, or ``Burn()`` to drop it.
    """
    if isinstance(output_loan_agent, Burn):
        agent = LoanAgentSpec(coin=loan_agent_coin)
    elif isinstance(output_loan_agent, (bytes, bytearray)):
        agent = LoanAgentSpec(coin=loan_agent_coin, output_locking_bytecode=bytes(output_loan_agent))
    else:
        raise InvalidInput("output_loan_agent must be a locking bytecode or Burn() to burn the loan agent nft")
    current = decode_loan_commitment_v1(_require_nft(loan_utxo, "loan_utxo").commitment)
    modifiers = LendingModifiers(
        script=CovenantScript.REPAY,
        difference=-current.principal,
        input_loan_utxo=loan_utxo,
        loan_agent=agent,
    )
    result = generate_lending_tx(ctx, moria_utxo, modifiers, delphi_utxo, funding_coins, rules)
    return _require(result, "interest_utxo")


def liquidate_loan(
    ctx: LendingContext,
    moria_utxo: UTXO,
    delphi_utxo: UTXO,
    loan_utxo: UTXO,
    funding_coins: Sequence[P2PKHCoin],
    rules: Sequence[PayoutRule],
) -> LendingTxResult:
    current = decode_loan_commitment_v1(_require_nft(loan_utxo, "loan_utxo").commitment)
    modifiers = LendingModifiers(script=CovenantScript.REPAY, difference=-current.principal, input_loan_utxo=loan_utxo)
    result = generate_lending_tx(ctx, moria_utxo, modifiers, delphi_utxo, funding_coins, rules)
    return _require(result, "interest_utxo")


def redeem_loan(
    ctx: LendingContext,
    moria_utxo: UTXO,
    delphi_utxo: UTXO,
    bporacle_utxo: UTXO,
    loan_utxo: UTXO,
    funding_coins: Sequence[P2PKHCoin],
    rules: Sequence[PayoutRule],
) -> LendingTxResult:
    """Buy out a loan's debt for its collateral at the oracle price."""
    current = decode_loan_commitment_v1(_require_nft(loan_utxo, "loan_utxo").commitment)
    modifiers = LendingModifiers(
        script=CovenantScript.REPAY,
        difference=-current.principal,
        input_loan_utxo=loan_utxo,
        bporacle_utxo=bporacle_utxo,
    )
    result = generate_lending_tx(ctx, moria_utxo, modifiers, delphi_utxo, funding_coins, rules)
    return _require(result, "interest_utxo", "bporacle_utxo", "borrower_p2nfth_utxo")


def update_covenant_sequence(
    ctx: LendingContext,
    moria_utxo: UTXO,
    delphi_utxo: UTXO,
    funding_coin: P2PKHCoin,
    change_locking_bytecode: bytes,
) -> LendingTxResult:
    modifiers = LendingModifiers(script=CovenantScript.UPDATE, difference=0)
    rules = [ChangePayoutRule(locking_bytecode=change_locking_bytecode)]
    return generate_lending_tx(ctx, moria_utxo, modifiers, delphi_utxo, [funding_coin], rules)


def _result_from(tx: ConstrainedTx, **located) -> LendingTxResult:
    return LendingTxResult(
        txbin=tx.compiled.txbin,
        txhash=tx.compiled.txhash,
        txfee=tx.txfee,
        payouts=tx.payout_utxos(),
        source_outputs=tx.source_outputs,
        outputs=tx.outputs,
        **located,
    )


def update_oracle_with_price_updater(
    ctx: LendingContext,
    delphi_utxo: UTXO,
    gp_updater_utxo: UTXO,
    message: bytes,
    signature: bytes,
    funding_coins: Sequence[P2PKHCoin],
    rules: Sequence[PayoutRule],
) -> LendingTxResult:
    """
    Publish a signed price message to the oracle through the price-updater covenant.

    The message must be newer than the oracle state in both timestamp and data
    sequence. Signature checks are left to the updater script.
    """
    delphi_nft = _require_nft(delphi_utxo, "delphi_utxo")
    _require_nft(gp_updater_utxo, "gp_updater_utxo")
    current = decode_delphi_commitment(delphi_nft.commitment)
    price_message = decode_price_message(message)
    if price_message.timestamp <= current.timestamp:
        raise InvalidInput("the price message timestamp must be newer than the oracle timestamp")
    if price_message.data_sequence <= current.data_sequence:
        raise InvalidInput("the price message data sequence must be greater than the oracle data sequence")
    _require_no_nft_funding(funding_coins)

    b = _LendingTx(ctx)
    b.spend(gp_updater_utxo, DELPHI_GP_UPDATER_UPDATE, {"oracle_message": bytes(message), "oracle_datasig": bytes(signature)})
    b.put(Output(gp_updater_utxo.output.locking_bytecode, gp_updater_utxo.output.amount, gp_updater_utxo.output.token), "delphi_gp_updater_utxo")
    b.spend(delphi_utxo, DELPHI_UPDATE)
    commitment = encode_delphi_commitment(
        DelphiCommitment(
            price=price_message.price,
            timestamp=price_message.timestamp,
            data_sequence=price_message.data_sequence,
            use_fee=current.use_fee,
        )
    )
    b.put(delphi_utxo.output.with_commitment(commitment), "delphi_utxo")
    for coin in funding_coins:
        b.spend_coin(coin)
    tx = b.build(rules, strict=False)
    result = _result_from(tx, **b.locate(tx))
    log.debug("oracle update tx %s: price %d, sequence %d", result.txhash.hex(), price_message.price, price_message.data_sequence)
    return result


def loan_add_collateral(
    ctx: LendingContext,
    loan_utxo: UTXO,
    loan_agent_coin: P2PKHCoin,
    funding_coins: Sequence[P2PKHCoin],
    additional_collateral_amount: int,
    output_loan_agent_locking_bytecode: bytes,
    rules: Sequence[PayoutRule],
) -> LendingTxResult:
    """Top up a loan's collateral, authorised by spending its loan agent."""
    if additional_collateral_amount < ctx.params.min_add_collateral:
        raise InvalidInput(f"additional_collateral_amount should be at least {ctx.params.min_add_collateral}")
    _require_nft(loan_utxo, "loan_utxo")
    if loan_agent_coin.output.nft is None:
        raise InvalidInput("loan_agent_coin is expected to hold an nft")
    b = _LendingTx(ctx)
    b.spend_coin(loan_agent_coin)
    agent = loan_agent_coin.output
    b.put(Output(output_loan_agent_locking_bytecode, agent.amount, agent.token), "loan_agent_utxo")
    b.spend(loan_utxo, LOAN_ADD_COLLATERAL)
    b.put(loan_utxo.output.with_amount(loan_utxo.output.amount + additional_collateral_amount), "loan_utxo")
    _require_no_nft_funding(funding_coins)
    for coin in funding_coins:
        b.spend_coin(coin)
    tx = b.build(rules, strict=False)
    return _result_from(tx, **b.locate(tx))


def loan_add_collateral_with_borrower_key(
    ctx: LendingContext,
    loan_utxo: UTXO,
    additional_collateral_amount: int,
    borrower_key: bytes,
    funding_coins: Sequence[P2PKHCoin],
    rules: Sequence[PayoutRule],
) -> LendingTxResult:
    """Top up a v0 loan, authorised by the borrower key named in its commitment."""
    if additional_collateral_amount < ctx.params.min_add_collateral:
        raise InvalidInput(f"additional_collateral_amount should be at least {ctx.params.min_add_collateral}")
    loan = decode_loan_commitment_v0(_require_nft(loan_utxo, "loan_utxo").commitment)
    if loan.principal <= 0:
        raise InvalidInput("loan principal should be greater than zero")
    if pubkey_hash_from_private_key(borrower_key) != loan.borrower_pkh:
        raise InvalidInput("borrower key does not match the loan's borrower pkh")
    _require_no_nft_funding(funding_coins)
    b = _LendingTx(ctx)
    b.spend(loan_utxo, LOAN_ADD_COLLATERAL, {"borrower_key": bytes(borrower_key)})
    b.put(loan_utxo.output.with_amount(loan_utxo.output.amount + additional_collateral_amount), "loan_utxo")
    for coin in funding_coins:
        b.spend_coin(coin)
    tx = b.build(rules, strict=False)
    return _result_from(tx, **b.locate(tx))


def _p2nfth_inputs(
    ctx: LendingContext, nft_input_index: int, next_input_index: int, entry: P2NFTHWithdrawEntry
) -> Tuple[List[InputTemplate], List[UTXO], int]:
    inputs: List[InputTemplate] = []
    nfts: List[UTXO] = []
    if entry.utxo.output.nft is not None:
        nfts.append(entry.utxo)
    if not entry.subentries:
        return inputs, nfts, next_input_index
    if entry.utxo.output.nft is None:
        raise InvalidInput("an entry with subentries must hold an nft")
    nfthash = output_nft_hash(entry.utxo.output)
    lock = ctx.p2nfth_locking_bytecode(nfthash)
    for sub in entry.subentries:
        if sub.utxo.output.locking_bytecode != lock:
            raise InvalidInput(
                f"coin is not locked to nft hash {nfthash.hex()}",
                {"txhash": sub.utxo.outpoint.txhash.hex(), "index": sub.utxo.outpoint.index},
            )
        inputs.append(
            InputTemplate.from_script(
                sub.utxo, P2NFTH_UNLOCK, {"nfthash": nfthash, "nft_index": encode_vm_number(nft_input_index)}
            )
        )
        entry_index = next_input_index
        sub_inputs, sub_nfts, next_input_index = _p2nfth_inputs(ctx, entry_index, next_input_index + 1, sub)
        inputs.extend(sub_inputs)
        nfts.extend(sub_nfts)
    return inputs, nfts, next_input_index


def withdraw_pay_to_nft_hash_coins(
    ctx: LendingContext,
    nft_coin: P2PKHCoin,
    entries: Sequence[P2NFTHWithdrawEntry],
    funding_coins: Sequence[P2PKHCoin],
    rules: Sequence[PayoutRule],
    create_nft_output: Callable[[UTXO], NFTOutputDecision],
) -> LendingTxResult:
    """
    Sweep coins locked to an nft's hash, recursing into coins locked to nfts
    that were themselves unlocked.

    ``create_nft_output`` decides for every nft spent: ``Keep(output)`` re-creates
    it, ``Burn()`` drops it.
    """
    if any(c.output.token is not None for c in funding_coins):
        raise InvalidInput("only native-only funding coins are allowed")
    if nft_coin.output.nft is None:
        raise InvalidInput("nft_coin is expected to hold an nft")
    b = _LendingTx(ctx)
    b.spend_coin(nft_coin)
    sub_inputs, nfts, _ = _p2nfth_inputs(ctx, 0, 1, P2NFTHWithdrawEntry(nft_coin.utxo, tuple(entries)))
    b.inputs.extend(sub_inputs)
    for coin in funding_coins:
        b.spend_coin(coin)
    kept: List[Output] = []
    for utxo in nfts:
        decision = create_nft_output(utxo)
        if isinstance(decision, Burn):
            continue
        if not isinstance(decision, Keep) or not isinstance(decision.value, Output):
            raise InvalidInput("create_nft_output must return Keep(output) or Burn()")
        kept.append(b.put(decision.value))
    tx = b.build(rules, strict=False)
    nft_utxos = []
    for output in kept:
        index = tx.index_of(output)
        if index == -1:
            raise InvalidProgramState("kept nft output index not found")
        nft_utxos.append(tx.utxo_at(index))
    log.debug("p2nfth withdraw tx %s: %d inputs, %d nfts kept", tx.compiled.txhash.hex(), len(b.inputs), len(kept))
    return _result_from(tx, nft_utxos=tuple(nft_utxos))
