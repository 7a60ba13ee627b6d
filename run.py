"""
Development server runner
开发服务器启动脚本
"""

import uvicorn
from app.core.config import settings

if __name__ == "__main__":
    # 房间状态保存在进程内存中，只能以单进程运行
    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        access_log=True,
        log_level=settings.LOG_LEVEL.lower()
    )
