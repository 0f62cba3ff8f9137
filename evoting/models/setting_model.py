from datetime import datetime

from pydantic import BaseModel


class ScheduleIn(BaseModel):
    startTime: datetime
    endTime: datetime
