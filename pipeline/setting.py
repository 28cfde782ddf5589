#  运行期开关 / Settings（只放与部署相关的少量环境变量）
import os

BRIDGE_HOST   = os.getenv("NEURA_BRIDGE_HOST", "127.0.0.1")                # 本地桥接服务监听地址
BRIDGE_PORT   = int(os.getenv("NEURA_BRIDGE_PORT", "8765"))                # 本地桥接服务端口
LOG_TO_FILE   = os.getenv("NEURA_LOG_TO_FILE", "false").lower() == "true"  # 是否写滚动日志文件
SSE_INTERVAL_MS = int(os.getenv("NEURA_SSE_INTERVAL_MS", "15000"))         # SSE 心跳间隔（毫秒）
