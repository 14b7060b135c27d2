"""rcsync 包：rclone 守护进程的监管/边车工具集。

推荐直接运行：
  `python -m rcsync`  → 启动监管进程（rclone rcd + crond，挂载对齐与计划任务）。

其他子命令：
  python -m rcsync execute_task '<payload>'  # cron 触发：去重后提交一次任务
  python -m rcsync healthcheck               # 校验挂载是否全部处于活动状态（退出码 0/1）
  python -m rcsync publish                   # 按 tasks.json 重新生成 crontab
  python -m rcsync serve                     # 单独启动管理 API

包含模块：
- `rcsync.supervisor`：监管进程核心逻辑（启动/就绪等待/初始化/存活监控/有序关闭）。
- `rcsync.server`：最小管理 API（前缀 `/rcsync/api`）。
- `rcsync.core.*`：配置、RC 客户端、挂载对齐、任务去重、计划发布与健康检查。
"""

__version__ = "0.1.0"
