from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
import os

app = FastAPI(title="Mock SMS Gateway", version="1.0.0")
# Numbers listed here are rejected, to exercise the failure path
REJECTED_NUMBERS = set(filter(None, os.getenv("MOCK_SMS_REJECT", "").split(",")))
SENT = []

@app.get("/health")
def health(): return {"status": "ok"}

@app.get("/api/v1/plain/", response_class=PlainTextResponse)
def send_plain(username: str = "", password: str = "", sender: str = "", number: str = "", message: str = ""):
    if not number or not message:
        return "Failed: number and message are required"
    if number in REJECTED_NUMBERS:
        return "Failed: number rejected"
    SENT.append({"sender": sender, "number": number, "message": message})
    return "OK"

@app.get("/sent")
def sent(): return {"messages": SENT}
