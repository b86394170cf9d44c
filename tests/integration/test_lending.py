from __future__ import annotations

import hashlib

import pytest

from src.codec.loan import LoanCommitment, decode_loan_commitment_v1, encode_loan_commitment_v0
from src.codec.nft import output_nft_hash
from src.codec.oracle import (
    BPOracleCommitment,
    PriceMessage,
    decode_delphi_commitment,
    encode_bporacle_commitment,
    encode_price_message,
)
from src.core.errors import InvalidInput
from src.integration.lending import (
    LendingContext,
    LoanTerms,
    P2NFTHWithdrawEntry,
    create_lending_context,
    liquidate_loan,
    loan_add_collateral,
    loan_add_collateral_with_borrower_key,
    mint_loan_with_baton_minter,
    mint_loan_with_existing_loan_agent,
    redeem_loan,
    refinance_loan,
    repay_loan,
    update_covenant_sequence,
    update_oracle_with_price_updater,
    withdraw_pay_to_nft_hash_coins,
)
from src.state.types import NFT, UTXO, Burn, ChangePayoutRule, Keep, NFTCapability, Output, P2PKHCoin, TokenComponent
from src.state.wire import OP_RETURN_SCRIPT, encode_vm_number
from tests.fakes import (
    AGENT_TOKEN,
    COIN_KEY,
    DELPHI_SEQUENCE,
    DELPHI_TS,
    GP_UPDATER_TOKEN,
    OTHER_P2PKH_LOCK,
    P2PKH_LOCK,
    SECONDS_PER_YEAR,
    FakeCompiler,
    delphi_commitment,
    loan_commitment,
    native_coin,
    nft_output,
    token_coin,
    utxo,
)

RULES = [ChangePayoutRule(locking_bytecode=P2PKH_LOCK)]
MORIA_SUPPLY = 10**10
COLLATERAL = 200_000_000


def _ctx() -> LendingContext:
    return create_lending_context(FakeCompiler())


def _moria(ctx: LendingContext) -> UTXO:
    lock = ctx.compiler.generate_bytecode("moria:moria_covenant")
    output = nft_output(
        ctx.params.moria_token_id,
        encode_vm_number(DELPHI_SEQUENCE - 1),
        NFTCapability.MINTING,
        lock=lock,
        token_amount=MORIA_SUPPLY,
    )
    return utxo(output, n=1)


def _delphi(ctx: LendingContext, price: int = 37_600) -> UTXO:
    lock = ctx.compiler.generate_bytecode("delphi:delphi_covenant")
    return utxo(nft_output(ctx.params.delphi_token_id, delphi_commitment(price), NFTCapability.MUTABLE, lock=lock), n=2)


def _baton(ctx: LendingContext) -> UTXO:
    lock = ctx.compiler.generate_bytecode("batonminter:batonminter_covenant")
    return utxo(nft_output(ctx.params.batonminter_token_id, b"\x05", NFTCapability.MINTING, lock=lock), n=3)


def _agent_coin(n: int = 70) -> P2PKHCoin:
    return P2PKHCoin(utxo(nft_output(AGENT_TOKEN, b"agent"), n=n), COIN_KEY)


def _loan(ctx: LendingContext, principal: int = 50_000, age: int = SECONDS_PER_YEAR, collateral: int = COLLATERAL) -> UTXO:
    nfthash = output_nft_hash(_agent_coin().output)
    commitment = loan_commitment(principal, 500, DELPHI_TS - age, nfthash)
    output = Output(
        ctx.compiler.generate_bytecode("moria:loan"),
        collateral,
        TokenComponent(ctx.params.moria_token_id, 0, NFT(NFTCapability.NONE, commitment)),
    )
    return utxo(output, n=4)


def test_mint_with_baton_minter_lays_out_outputs() -> None:
    ctx = _ctx()
    moria_token_id = ctx.params.moria_token_id
    result = mint_loan_with_baton_minter(
        ctx,
        _moria(ctx),
        _delphi(ctx),
        _baton(ctx),
        LoanTerms(50_000, COLLATERAL, 500),
        [native_coin(300_000_000)],
        OTHER_P2PKH_LOCK,
        RULES,
    )
    outputs = result.outputs
    assert result.moria_utxo.outpoint.index == 0
    assert result.delphi_utxo.outpoint.index == 1
    assert result.loan_utxo.outpoint.index == 2
    assert outputs[3].amount == 1000
    assert outputs[3].token == TokenComponent(moria_token_id, 50_000)
    assert outputs[4].token is None
    assert result.batonminter_utxo.outpoint.index == 5
    assert result.loan_agent_utxo.outpoint.index == 6

    moria = result.moria_utxo.output
    assert moria.token.amount == MORIA_SUPPLY - 50_000
    assert moria.nft.commitment == encode_vm_number(DELPHI_SEQUENCE)
    assert result.delphi_utxo.output.amount == 2000
    baton = result.batonminter_utxo.output
    assert baton.nft.commitment == b"\x06"
    assert baton.amount == 2000
    assert result.fees.total == 2000

    agent = result.loan_agent_utxo.output
    assert agent.locking_bytecode == OTHER_P2PKH_LOCK
    assert agent.token.token_id == ctx.params.batonminter_token_id
    assert agent.nft == NFT(NFTCapability.NONE, b"\x05")
    loan = decode_loan_commitment_v1(result.loan_utxo.output.nft.commitment)
    assert loan == LoanCommitment(
        principal=50_000, annual_interest_bp=500, timestamp=DELPHI_TS, loan_agent_nfthash=output_nft_hash(agent)
    )
    assert result.loan_utxo.output.amount == COLLATERAL
    assert sum(o.amount for o in result.source_outputs) == sum(o.amount for o in outputs) + result.txfee


def test_mint_rejects_undercollateralized_or_out_of_range_terms() -> None:
    ctx = _ctx()
    args = (ctx, _moria(ctx))
    with pytest.raises(InvalidInput):
        mint_loan_with_baton_minter(
            *args, _delphi(ctx, 37_500), _baton(ctx), LoanTerms(50_000, COLLATERAL, 500),
            [native_coin(300_000_000)], OTHER_P2PKH_LOCK, RULES,
        )
    with pytest.raises(InvalidInput):
        mint_loan_with_baton_minter(
            *args, _delphi(ctx), _baton(ctx), LoanTerms(50_000, COLLATERAL, 40_000),
            [native_coin(300_000_000)], OTHER_P2PKH_LOCK, RULES,
        )
    with pytest.raises(InvalidInput):
        mint_loan_with_baton_minter(
            *args, _delphi(ctx), _baton(ctx), LoanTerms(900, COLLATERAL, 500),
            [native_coin(300_000_000)], OTHER_P2PKH_LOCK, RULES,
        )


def test_mint_with_existing_agent_links_the_given_hash() -> None:
    ctx = _ctx()
    nfthash = b"\x42" * 32
    result = mint_loan_with_existing_loan_agent(
        ctx, _moria(ctx), _delphi(ctx), LoanTerms(20_000, COLLATERAL, 100), [native_coin(300_000_000)], nfthash, RULES
    )
    assert decode_loan_commitment_v1(result.loan_utxo.output.nft.commitment).loan_agent_nfthash == nfthash
    assert result.loan_agent_utxo is None
    assert result.batonminter_utxo is None
    # the two token slots fall back to OP_RETURN
    assert [o.locking_bytecode for o in result.outputs[5:]] == [OP_RETURN_SCRIPT, OP_RETURN_SCRIPT]
    with pytest.raises(InvalidInput):
        mint_loan_with_existing_loan_agent(
            ctx, _moria(ctx), _delphi(ctx), LoanTerms(20_000, COLLATERAL, 100), [native_coin(300_000_000)], b"\x42" * 31, RULES
        )


def test_refinance_keeps_the_agent_and_pays_interest() -> None:
    ctx = _ctx()
    funding = [token_coin(ctx.params.moria_token_id, 2500, n=61), native_coin(100_000_000, n=62)]
    result = refinance_loan(
        ctx, _moria(ctx), _delphi(ctx), _loan(ctx), LoanTerms(50_000, 250_000_000, 600),
        _agent_coin(), funding, P2PKH_LOCK, RULES,
    )
    assert result.loan_utxo.outpoint.index == 2
    assert result.loan_agent_utxo.outpoint.index == 3
    assert result.interest_utxo.outpoint.index == 4
    assert result.interest_utxo.output.token.amount == 2500
    assert result.interest_utxo.output.locking_bytecode == ctx.interest_locking_bytecode
    assert result.moria_utxo.output.token.amount == MORIA_SUPPLY
    loan = decode_loan_commitment_v1(result.loan_utxo.output.nft.commitment)
    assert (loan.principal, loan.annual_interest_bp, loan.timestamp) == (50_000, 600, DELPHI_TS)
    assert loan.loan_agent_nfthash == output_nft_hash(result.loan_agent_utxo.output)
    assert result.loan_utxo.output.amount == 250_000_000


def _repay_funding(ctx: LendingContext, tokens: int):
    return [token_coin(ctx.params.moria_token_id, tokens, n=61), native_coin(100_000, n=62)]


def test_repay_returns_principal_and_keeps_the_agent() -> None:
    ctx = _ctx()
    result = repay_loan(
        ctx, _moria(ctx), _delphi(ctx), _loan(ctx), _agent_coin(), _repay_funding(ctx, 52_500), P2PKH_LOCK, RULES
    )
    assert result.moria_utxo.output.token.amount == MORIA_SUPPLY + 50_000
    assert result.interest_utxo.outpoint.index == 2
    assert result.interest_utxo.output.token.amount == 2500
    assert result.loan_agent_utxo.outpoint.index == 3
    assert result.loan_agent_utxo.output.nft == NFT(NFTCapability.NONE, b"agent")
    change = result.outputs[4]
    assert change.token is None
    assert change.amount > COLLATERAL - 10_000
    assert result.outputs[5].locking_bytecode == OP_RETURN_SCRIPT


def test_repay_can_burn_the_agent() -> None:
    ctx = _ctx()
    result = repay_loan(
        ctx, _moria(ctx), _delphi(ctx), _loan(ctx), _agent_coin(), _repay_funding(ctx, 52_500), Burn(), RULES
    )
    assert result.loan_agent_utxo is None
    assert result.outputs[3].locking_bytecode == OP_RETURN_SCRIPT
    with pytest.raises(InvalidInput):
        repay_loan(ctx, _moria(ctx), _delphi(ctx), _loan(ctx), _agent_coin(), _repay_funding(ctx, 52_500), "burn", RULES)


def test_repay_short_of_tokens_is_rejected() -> None:
    ctx = _ctx()
    with pytest.raises(InvalidInput):
        repay_loan(ctx, _moria(ctx), _delphi(ctx), _loan(ctx), _agent_coin(), _repay_funding(ctx, 52_499), Burn(), RULES)


def test_liquidation_needs_the_loan_under_threshold() -> None:
    ctx = _ctx()
    result = liquidate_loan(ctx, _moria(ctx), _delphi(ctx, 30_000), _loan(ctx), _repay_funding(ctx, 52_500), RULES)
    assert result.interest_utxo.output.token.amount == 2500
    assert result.outputs[3].locking_bytecode == OP_RETURN_SCRIPT
    assert result.outputs[4].amount > COLLATERAL - 10_000
    with pytest.raises(InvalidInput):
        liquidate_loan(ctx, _moria(ctx), _delphi(ctx), _loan(ctx), _repay_funding(ctx, 52_500), RULES)


def test_redeem_pays_leftover_collateral_to_the_agent_hash() -> None:
    ctx = _ctx()
    bporacle = utxo(
        nft_output(
            ctx.params.bporacle_token_id,
            encode_bporacle_commitment(BPOracleCommitment(timestamp=DELPHI_TS, use_fee=500, bp_value=300)),
            NFTCapability.MUTABLE,
            lock=ctx.compiler.generate_bytecode("bporacle:bporacle_covenant"),
        ),
        n=5,
    )
    loan = _loan(ctx)
    result = redeem_loan(ctx, _moria(ctx), _delphi(ctx), bporacle, loan, _repay_funding(ctx, 52_500), RULES)
    assert result.bporacle_utxo.outpoint.index == 3
    assert result.bporacle_utxo.output.amount == 1500
    assert result.fees.bporacle_use_fee == 500
    assert result.fees.total == 1500
    borrower = result.borrower_p2nfth_utxo.output
    assert result.borrower_p2nfth_utxo.outpoint.index == 4
    nfthash = decode_loan_commitment_v1(loan.output.nft.commitment).loan_agent_nfthash
    assert borrower.locking_bytecode == ctx.p2nfth_locking_bytecode(nfthash)
    assert borrower.amount == COLLATERAL - 139_627_660


def test_update_refreshes_the_covenant_sequence() -> None:
    ctx = _ctx()
    result = update_covenant_sequence(ctx, _moria(ctx), _delphi(ctx), native_coin(10_000), P2PKH_LOCK)
    assert result.moria_utxo.output.nft.commitment == encode_vm_number(DELPHI_SEQUENCE)
    assert result.moria_utxo.output.token.amount == MORIA_SUPPLY
    assert result.delphi_utxo.output.amount == 2000
    assert len(result.outputs) == 3
    (payout,) = result.payouts
    assert payout.output.amount == 10_000 - 1000 - result.txfee
    with pytest.raises(InvalidInput):
        update_covenant_sequence(ctx, _moria(ctx), _delphi(ctx), token_coin(ctx.params.moria_token_id, 5), P2PKH_LOCK)


def _gp_updater(ctx: LendingContext) -> UTXO:
    lock = ctx.compiler.generate_bytecode("delphi_gp_updater:delphi_gp_updater_covenant")
    return utxo(nft_output(GP_UPDATER_TOKEN, b"", NFTCapability.MINTING, lock=lock), n=6)


def test_price_updater_publishes_a_newer_price() -> None:
    ctx = _ctx()
    message = encode_price_message(PriceMessage(DELPHI_TS + 60, 1, DELPHI_SEQUENCE + 1, 38_000))
    result = update_oracle_with_price_updater(
        ctx, _delphi(ctx), _gp_updater(ctx), message, b"\x00" * 64, [native_coin(10_000)], RULES
    )
    state = decode_delphi_commitment(result.delphi_utxo.output.nft.commitment)
    assert (state.price, state.timestamp, state.data_sequence, state.use_fee) == (
        38_000, DELPHI_TS + 60, DELPHI_SEQUENCE + 1, 1000,
    )
    assert result.delphi_utxo.output.amount == 1000
    assert result.delphi_gp_updater_utxo.outpoint.index == 0


@pytest.mark.parametrize(
    "timestamp,sequence",
    [(DELPHI_TS, DELPHI_SEQUENCE + 1), (DELPHI_TS + 60, DELPHI_SEQUENCE)],
)
def test_price_updater_rejects_stale_messages(timestamp: int, sequence: int) -> None:
    ctx = _ctx()
    message = encode_price_message(PriceMessage(timestamp, 1, sequence, 38_000))
    with pytest.raises(InvalidInput):
        update_oracle_with_price_updater(
            ctx, _delphi(ctx), _gp_updater(ctx), message, b"\x00" * 64, [native_coin(10_000)], RULES
        )


def test_add_collateral_with_agent() -> None:
    ctx = _ctx()
    loan = _loan(ctx)
    result = loan_add_collateral(ctx, loan, _agent_coin(), [native_coin(300_000)], 100_000, P2PKH_LOCK, RULES)
    assert result.loan_agent_utxo.outpoint.index == 0
    assert result.loan_utxo.outpoint.index == 1
    assert result.loan_utxo.output.amount == COLLATERAL + 100_000
    assert result.loan_utxo.output.nft == loan.output.nft
    with pytest.raises(InvalidInput):
        loan_add_collateral(ctx, loan, _agent_coin(), [native_coin(300_000)], 99_999, P2PKH_LOCK, RULES)


def test_add_collateral_with_borrower_key() -> None:
    try:
        hashlib.new("ripemd160")
    except ValueError:
        pytest.skip("ripemd160 not available in this hashlib build")
    from src.integration.keys import pubkey_hash_from_private_key

    ctx = _ctx()
    key = b"\x00" * 31 + b"\x01"
    commitment = encode_loan_commitment_v0(
        LoanCommitment(principal=50_000, annual_interest_bp=500, timestamp=DELPHI_TS, borrower_pkh=pubkey_hash_from_private_key(key))
    )
    loan = utxo(
        Output(
            ctx.compiler.generate_bytecode("moria:loan_v0"),
            COLLATERAL,
            TokenComponent(ctx.params.moria_token_id, 0, NFT(NFTCapability.NONE, commitment)),
        ),
        n=7,
    )
    result = loan_add_collateral_with_borrower_key(ctx, loan, 100_000, key, [native_coin(300_000)], RULES)
    assert result.loan_utxo.outpoint.index == 0
    assert result.loan_utxo.output.amount == COLLATERAL + 100_000
    with pytest.raises(InvalidInput):
        loan_add_collateral_with_borrower_key(ctx, loan, 100_000, b"\x00" * 31 + b"\x02", [native_coin(300_000)], RULES)


def _p2nfth_coin(ctx: LendingContext, nft_coin: P2PKHCoin, amount: int = 50_000) -> UTXO:
    return utxo(Output(ctx.p2nfth_locking_bytecode(output_nft_hash(nft_coin.output)), amount), n=81)


def test_withdraw_keeps_or_burns_the_nft() -> None:
    ctx = _ctx()
    nft_coin = _agent_coin(n=80)
    entries = [P2NFTHWithdrawEntry(_p2nfth_coin(ctx, nft_coin))]

    kept = withdraw_pay_to_nft_hash_coins(ctx, nft_coin, entries, [], RULES, lambda u: Keep(u.output))
    (nft_utxo,) = kept.nft_utxos
    assert nft_utxo.output.nft == NFT(NFTCapability.NONE, b"agent")
    assert kept.outputs[nft_utxo.outpoint.index] is nft_utxo.output
    (payout,) = kept.payouts
    assert payout.output.amount == 50_000 - kept.txfee

    burned = withdraw_pay_to_nft_hash_coins(ctx, nft_coin, entries, [], RULES, lambda u: Burn())
    assert burned.nft_utxos == ()
    assert all(o.token is None for o in burned.outputs)


def test_withdraw_rejects_foreign_coins_and_bad_decisions() -> None:
    ctx = _ctx()
    nft_coin = _agent_coin(n=80)
    foreign = [P2NFTHWithdrawEntry(utxo(Output(P2PKH_LOCK, 50_000), n=82))]
    with pytest.raises(InvalidInput):
        withdraw_pay_to_nft_hash_coins(ctx, nft_coin, foreign, [], RULES, lambda u: Burn())
    entries = [P2NFTHWithdrawEntry(_p2nfth_coin(ctx, nft_coin))]
    with pytest.raises(InvalidInput):
        withdraw_pay_to_nft_hash_coins(ctx, nft_coin, entries, [], RULES, lambda u: u.output)
    with pytest.raises(InvalidInput):
        withdraw_pay_to_nft_hash_coins(ctx, nft_coin, entries, [token_coin(AGENT_TOKEN, 5)], RULES, lambda u: Burn())
