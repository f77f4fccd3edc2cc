import sys
import os

from mangum import Mangum

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rewards.api import create_app

app = create_app()
app.root_path = "/api"

handler = Mangum(app)
