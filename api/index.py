from mangum import Mangum

from impact_ledger.api import app

handler = Mangum(app, lifespan="off")
