from fastapi import FastAPI, HTTPException

from spendguard.domain.reference import SEED_MERCHANTS
from spendguard.infrastructure.clients.merchants import merchant_to_payload

app = FastAPI(title="Mock Merchant Registry", version="1.0.0")
MERCHANTS = {m.merchant_id: m for m in SEED_MERCHANTS}

@app.get("/health")
def health(): return {"status": "ok"}

@app.get("/merchants")
def list_merchants():
    return {"merchants": [merchant_to_payload(m) for m in MERCHANTS.values()]}

@app.get("/merchants/{merchant_id}")
def get_merchant(merchant_id: str):
    merchant = MERCHANTS.get(merchant_id)
    if merchant is None:
        raise HTTPException(status_code=404, detail="merchant not found")
    return merchant_to_payload(merchant)
