"""
In-process signing shared by the seed and raw private key signers.
"""

from __future__ import annotations

from embit.ec import PublicKey as EcPublicKey
from embit.psbt import PSBT, InputScope
from embit.transaction import TransactionOutput
from loguru import logger

from btcwallet.signers.base import ConfigLike, Signer
from btcwallet.wallet.keys import KeyPair
from btcwallet.wallet.scripts import (
    BIP84,
    build_payment_script,
    detect_input_ownership,
    ensure_witness_utxo_if_needed,
    load_psbt,
    payment_address,
)
from btcwallet.wallet.signing import (
    Transaction,
    create_p2wpkh_script_code,
    deserialize_transaction,
    sign_message,
    sign_p2pkh_input,
    sign_p2wpkh_input,
    verify_message,
)


class SoftwareSigner(Signer):
    """Signer whose private scalar lives in this process, inside a KeyPair."""

    def __init__(self, key_pair: KeyPair, config: ConfigLike = None):
        super().__init__(config)
        self._key_pair = key_pair
        self._address = payment_address(self.config.bip, key_pair.public_key, self.config.network)

    @property
    def address(self) -> str:
        self._require_active()
        return self._address

    @property
    def key_pair(self) -> KeyPair:
        self._require_active()
        return self._key_pair

    async def get_public_key(self) -> bytes:
        self._require_active()
        return self._key_pair.public_key

    async def get_address(self) -> str:
        return self.address

    async def sign(self, message: str | bytes) -> str:
        self._require_active()
        return sign_message(self._key_pair.signing_key(), message)

    async def verify(self, message: str | bytes, signature: str) -> bool:
        self._require_active()
        return verify_message(self._key_pair.public_key, message, signature)

    async def sign_psbt(self, psbt: PSBT | str | bytes) -> PSBT:
        self._require_active()
        psbt = load_psbt(psbt)

        public_key = self._key_pair.public_key
        bip = self.config.bip
        my_script = build_payment_script(bip, public_key, self.config.network)

        unsigned_tx: Transaction | None = None
        signed = 0
        for index in range(len(psbt.inputs)):
            ownership = detect_input_ownership(psbt, index, my_script)
            if not ownership.is_ours:
                logger.debug(f"Skipping input {index}: not paying to our script")
                continue

            ensure_witness_utxo_if_needed(psbt, index, bip, ownership.previous_output, ownership.input)
            self._annotate_input(ownership.input)

            if unsigned_tx is None:
                unsigned_tx = deserialize_transaction(psbt.tx.serialize())

            signature = self._sign_input(unsigned_tx, index, ownership.previous_output)
            ownership.input.partial_sigs[EcPublicKey.parse(public_key)] = signature
            signed += 1

        logger.info(f"Signed {signed} of {len(psbt.inputs)} PSBT inputs")
        return psbt

    def _sign_input(self, tx: Transaction, index: int, previous_output: TransactionOutput) -> bytes:
        private_key = self._key_pair.signing_key()
        if self.config.bip == BIP84:
            script_code = create_p2wpkh_script_code(self._key_pair.public_key)
            return sign_p2wpkh_input(tx, index, script_code, previous_output.value, private_key)
        return sign_p2pkh_input(tx, index, previous_output.script_pubkey.data, private_key)

    def _annotate_input(self, psbt_input: InputScope) -> None:
        """Hook for variants that attach extra metadata to owned inputs."""

    def _wipe(self) -> None:
        self._key_pair.wipe()

    def dispose(self) -> None:
        if self._disposed:
            return
        self._wipe()
        self._disposed = True
        logger.debug(f"{type(self).__name__} disposed")
